"""
Submit button used at the bottom of every form.
"""

from __future__ import annotations

from ..buttons import Button


class SubmitButton(Button):
    def __init__(self, label: str, *, variant: str = "primary", full_width: bool = False) -> None:
        super().__init__(label, variant=variant, type="submit", full_width=full_width)
