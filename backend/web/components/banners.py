"""
Page-level banners: flash messages and the impersonation bar.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from backend.identity_access.domain import ImpersonationState
from backend.identity_access.impersonation import elapsed_label

from .base import Component, csrf_input

FLASH_KINDS = ("info", "success", "warning", "error")


class FlashMessages(Component):
    """One-shot notifications popped from the session record."""

    def __init__(self, messages: Iterable[dict]) -> None:
        self.messages = list(messages)

    def render(self) -> str:
        if not self.messages:
            return ""
        items = []
        for msg in self.messages:
            kind = msg.get("kind") if msg.get("kind") in FLASH_KINDS else "info"
            role = "alert" if kind == "error" else "status"
            items.append(
                f'<div class="flash flash--{kind}" role="{role}">{self.escape(msg.get("message"))}</div>'
            )
        return f'<div class="flash-stack" id="flash-messages">{"".join(items)}</div>'


class ImpersonationBanner(Component):
    """Warning bar shown on every page while a super admin impersonates a user."""

    def __init__(self, state: ImpersonationState, *, csrf_token: str, now: Optional[datetime] = None) -> None:
        self.state = state
        self.csrf_token = csrf_token
        self.now = now

    def render(self) -> str:
        target = self.state.target_profile
        original = self.state.original_profile
        reason_html = (
            f'<span class="impersonation__reason">Reason: {self.escape(self.state.reason)}</span>'
            if self.state.reason
            else ""
        )
        return (
            '<div class="impersonation-banner" role="alert" id="impersonation-banner">'
            '<div class="impersonation__details">'
            f'<strong>Impersonating {self.escape(target.display_name)}</strong> '
            f'<span class="impersonation__email">({self.escape(target.email)})</span> '
            f'<span class="badge">{self.escape(target.role)}</span> '
            f'<span class="impersonation__duration">Duration: '
            f"{self.escape(elapsed_label(self.state.started_at, self.now))}</span> "
            f"{reason_html}"
            f'<span class="impersonation__admin">Signed in as {self.escape(original.email)}</span>'
            "</div>"
            '<form method="post" action="/impersonation/end">'
            f"{csrf_input(self.csrf_token)}"
            '<button type="submit" class="btn btn--warning">Exit Impersonation</button>'
            "</form>"
            "</div>"
        )
