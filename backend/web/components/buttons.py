"""
Button component: renders a <button> or, with `href`, a button-styled link.
"""

from __future__ import annotations

from typing import Optional

from .base import Component

VARIANTS = ("primary", "secondary", "outline", "danger", "ghost", "warning")
SIZES = ("sm", "md", "lg")


class Button(Component):
    def __init__(
        self,
        label: str,
        *,
        variant: str = "primary",
        size: str = "md",
        href: Optional[str] = None,
        type: str = "button",
        full_width: bool = False,
        disabled: bool = False,
        name: Optional[str] = None,
        value: Optional[str] = None,
    ) -> None:
        self.label = label
        self.variant = variant if variant in VARIANTS else "primary"
        self.size = size if size in SIZES else "md"
        self.href = href
        self.type = type
        self.full_width = full_width
        self.disabled = disabled
        self.name = name
        self.value = value

    def css(self) -> str:
        return self.classes("btn", f"btn--{self.variant}", f"btn--{self.size}", "btn--block" if self.full_width else None)

    def render(self) -> str:
        if self.href and not self.disabled:
            return f'<a {self.attributes(href=self.href, class_=self.css())}>{self.escape(self.label)}</a>'
        attrs = self.attributes(
            type=self.type, class_=self.css(), disabled=self.disabled, name=self.name, value=self.value
        )
        return f"<button {attrs}>{self.escape(self.label)}</button>"
