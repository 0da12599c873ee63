"""
Password strength indicator shown under password inputs.
"""

from __future__ import annotations

from typing import Optional

from backend.lms.validation import password_strength

from ..base import Component

LABELS = {"weak": "Weak", "medium": "Medium", "strong": "Strong"}


class PasswordStrengthIndicator(Component):
    """Five-segment meter plus the list of missing criteria.

    Renders nothing for an empty password or when `show` is False.
    """

    def __init__(self, password: Optional[str], *, show: bool = True) -> None:
        self.password = password or ""
        self.show = show

    def render(self) -> str:
        if not self.show or not self.password:
            return ""
        result = password_strength(self.password)
        segments = "".join(
            f'<span class="strength__segment{" strength__segment--" + result.strength if level <= result.score else ""}">'
            "</span>"
            for level in range(1, 6)
        )
        feedback = "".join(f"<li>{self.escape(item)}</li>" for item in result.feedback)
        feedback_html = f'<ul class="strength__feedback">{feedback}</ul>' if feedback else ""
        return (
            f'<div class="password-strength" data-strength="{result.strength}" data-score="{result.score}">'
            '<p class="strength__label">Password strength: '
            f'<strong class="strength__value strength__value--{result.strength}">{LABELS[result.strength]}</strong></p>'
            f'<div class="strength__meter" aria-hidden="true">{segments}</div>'
            f"{feedback_html}"
            "</div>"
        )
