"""
Base class for server-rendered HTML components.

Components are plain Python objects with a `render()` method returning an
HTML string. The helpers here are the only places that turn user data into
markup, so every subclass escapes through them.
"""
from __future__ import annotations

from html import escape as _escape
from typing import Any, Iterable, Optional


class Component:
    def render(self) -> str:  # pragma: no cover - abstract
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()

    @staticmethod
    def escape(value: Any) -> str:
        if value is None:
            return ""
        return _escape(str(value), quote=True)

    @classmethod
    def attributes(cls, **attrs: Any) -> str:
        """Render HTML attributes.

        `class_`/`for_` drop the trailing underscore, other underscores become
        dashes (`aria_label` -> `aria-label`). `None`/`False` values are
        omitted and `True` renders a bare boolean attribute.
        """
        parts = []
        for key, value in attrs.items():
            if value is None or value is False:
                continue
            name = key[:-1] if key.endswith("_") else key
            name = name.replace("_", "-")
            if value is True:
                parts.append(name)
            else:
                parts.append(f'{name}="{cls.escape(value)}"')
        return " ".join(parts)

    @staticmethod
    def classes(*names: Optional[str]) -> str:
        return " ".join(n for n in names if n)

    @staticmethod
    def join(parts: Iterable[str]) -> str:
        return "".join(parts)


def csrf_input(token: str) -> str:
    return f'<input type="hidden" name="csrf_token" value="{Component.escape(token)}">'
