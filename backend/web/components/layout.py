"""
Layout component: wraps page content into the full HTML document.
"""

from __future__ import annotations

from typing import Iterable, Optional

from backend.identity_access.domain import ImpersonationState, Profile

from .banners import FlashMessages, ImpersonationBanner
from .base import Component
from .navigation import Navigation


class Layout(Component):
    """Main layout component that assembles the complete page"""

    def __init__(
        self,
        title: str,
        content: str,
        *,
        profile: Optional[Profile] = None,
        current_path: str = "/",
        csrf_token: str = "",
        flash: Iterable[dict] = (),
        impersonation: Optional[ImpersonationState] = None,
        show_super_admin: bool = False,
        theme: str = "light",
        show_nav: bool = True,
    ) -> None:
        """
        Args:
            title: Page title (will be escaped)
            content: Main content HTML (pre-rendered components)
            profile: Effective profile of the viewer; None for anonymous pages
            impersonation: Active impersonation state; renders the banner
            theme: "light" or "dark", applied as a class on <html>
        """
        self.title = title
        self.content = content
        self.profile = profile
        self.current_path = current_path
        self.csrf_token = csrf_token
        self.flash = list(flash)
        self.impersonation = impersonation
        self.show_super_admin = show_super_admin
        self.theme = theme
        self.show_nav = show_nav

    def render(self) -> str:
        nav_html = (
            Navigation(
                self.profile,
                self.current_path,
                csrf_token=self.csrf_token,
                show_super_admin=self.show_super_admin,
                theme=self.theme,
            ).render()
            if self.show_nav
            else ""
        )
        banner_html = (
            ImpersonationBanner(self.impersonation, csrf_token=self.csrf_token).render()
            if self.impersonation is not None
            else ""
        )
        return f"""<!DOCTYPE html>
<html lang="en" class="theme-{self.escape(self.theme)}">
<head>
    {self._render_head()}
</head>
<body>
    <a href="#main-content" class="skip-link">Skip to main content</a>
    {banner_html}
    {nav_html}
    <main id="main-content" class="main-content" role="main">
        {self._render_main_inner()}
    </main>
</body>
</html>"""

    def render_fragment(self) -> str:
        """Return only the `<main>` children for HTMX swaps."""
        return self._render_main_inner()

    def _render_head(self) -> str:
        return f"""
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="description" content="ClearCourse Studio - course platform for teams">
    <title>{self.escape(self.title)} - ClearCourse Studio</title>
    <link rel="stylesheet" href="/static/css/clearcourse.css?v=1">
    <script src="/static/js/clearcourse.js?v=1" defer></script>
    """

    def _render_main_inner(self) -> str:
        return f"""
        {FlashMessages(self.flash).render()}
        {self.content}
        <footer class="content-footer" role="contentinfo">
            <p class="text-muted">
                <a href="/terms">Terms</a> &middot; <a href="/privacy">Privacy</a> &middot;
                <a href="/contact">Contact</a>
            </p>
        </footer>
        """
