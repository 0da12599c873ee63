"""
Navigation bar with role-based links.

The menu is data-driven: each role maps to a list of (href, label) entries.
Visibility alone never grants access; routes re-check roles server-side.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from backend.identity_access.domain import Profile
from backend.web.routing import dashboard_path_for

from .base import Component, csrf_input

NavItem = Tuple[str, str]

PUBLIC_ITEMS: List[NavItem] = [
    ("/features", "Features"),
    ("/pricing", "Pricing"),
    ("/about", "About"),
    ("/contact", "Contact"),
]

ROLE_ITEMS: Dict[str, List[NavItem]] = {
    "learner": [
        ("/support", "Support"),
        ("/profile", "Profile"),
    ],
    "instructor": [
        ("/analytics", "Analytics"),
        ("/support", "Support"),
        ("/profile", "Profile"),
    ],
    "admin": [
        ("/settings/organization", "Organization"),
        ("/settings/billing", "Billing"),
        ("/support", "Support"),
        ("/profile", "Profile"),
    ],
}

ROLE_LABELS = {"learner": "Learner", "instructor": "Instructor", "admin": "Admin"}


class Navigation(Component):
    def __init__(
        self,
        profile: Optional[Profile] = None,
        current_path: str = "/",
        *,
        csrf_token: str = "",
        show_super_admin: bool = False,
        theme: str = "light",
        brand_name: str = "ClearCourse Studio",
    ) -> None:
        self.profile = profile
        self.current_path = current_path or "/"
        self.csrf_token = csrf_token
        self.show_super_admin = show_super_admin
        self.theme = theme
        self.brand_name = brand_name

    def items(self) -> List[NavItem]:
        if self.profile is None:
            return list(PUBLIC_ITEMS)
        items = [(dashboard_path_for(self.profile), "Dashboard")]
        items.extend(ROLE_ITEMS.get(self.profile.role, ROLE_ITEMS["learner"]))
        if self.show_super_admin:
            items.append(("/super-admin", "Super Admin"))
        return items

    def _active_href(self, items: List[NavItem]) -> Optional[str]:
        """Best prefix match so nested pages keep their section highlighted."""
        best, best_len = None, 0
        for href, _label in items:
            if self.current_path == href:
                return href
            if href != "/" and self.current_path.startswith(href) and len(href) > best_len:
                best, best_len = href, len(href)
        return best

    def _link(self, href: str, label: str, active: bool) -> str:
        attrs = self.attributes(
            href=href,
            class_=self.classes("nav-link", "active" if active else None),
            aria_current="page" if active else None,
        )
        return f"<a {attrs}>{self.escape(label)}</a>"

    def _theme_toggle(self) -> str:
        next_theme = "light" if self.theme == "dark" else "dark"
        token = csrf_input(self.csrf_token) if self.csrf_token else ""
        return (
            '<form method="post" action="/preferences/theme" class="nav-form">'
            f"{token}"
            f'<input type="hidden" name="theme" value="{next_theme}">'
            f'<button type="submit" class="btn btn--ghost" aria-label="Switch to {next_theme} mode">'
            f'{"Light" if next_theme == "light" else "Dark"} mode</button>'
            "</form>"
        )

    def _account(self) -> str:
        if self.profile is None:
            return (
                '<a class="btn btn--ghost" href="/login">Sign in</a>'
                '<a class="btn btn--primary" href="/signup">Get started</a>'
            )
        role = ROLE_LABELS.get(self.profile.role, "User")
        return (
            '<div class="nav-user">'
            f'<span class="nav-user__name">{self.escape(self.profile.display_name)}</span>'
            f'<span class="nav-user__role">{self.escape(role)}</span>'
            "</div>"
            '<form method="post" action="/logout" class="nav-form">'
            f"{csrf_input(self.csrf_token)}"
            '<button type="submit" class="btn btn--ghost">Sign out</button>'
            "</form>"
        )

    def render(self) -> str:
        items = self.items()
        active = self._active_href(items)
        links = "".join(self._link(href, label, href == active) for href, label in items)
        home = dashboard_path_for(self.profile) if self.profile is not None else "/"
        return (
            '<header class="navbar" role="banner">'
            f'<a class="navbar__brand" href="{home}">{self.escape(self.brand_name)}</a>'
            f'<nav class="navbar__links" aria-label="Main navigation">{links}</nav>'
            f'<div class="navbar__actions">{self._theme_toggle()}{self._account()}</div>'
            "</header>"
        )
