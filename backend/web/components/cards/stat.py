"""
StatCard component for dashboard counters.
"""

from __future__ import annotations

from typing import Optional

from ..base import Component


class StatCard(Component):
    def __init__(self, label: str, value, *, hint: Optional[str] = None, tone: str = "default") -> None:
        self.label = label
        self.value = value
        self.hint = hint
        self.tone = tone

    def render(self) -> str:
        hint_html = f'<p class="stat-card__hint">{self.escape(self.hint)}</p>' if self.hint else ""
        return (
            f'<div class="card stat-card stat-card--{self.escape(self.tone)}">'
            f'<p class="stat-card__label">{self.escape(self.label)}</p>'
            f'<p class="stat-card__value">{self.escape(self.value)}</p>'
            f"{hint_html}"
            "</div>"
        )
