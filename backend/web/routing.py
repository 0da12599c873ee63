"""
Path shim: which URL paths are public, which need an organization, and where
each role lands after sign-in.

Matching is plain string equality (public pages) or prefix (organization
pages); there are no nested matchers or per-route guards beyond this.
"""
from __future__ import annotations

from typing import Optional

from backend.identity_access.domain import Profile

PUBLIC_ROUTES = frozenset(
    {
        "/",
        "/pricing",
        "/features",
        "/about",
        "/contact",
        "/faq",
        "/terms",
        "/privacy",
        "/login",
        "/signup",
        "/reset-password",
    }
)
SYSTEM_PUBLIC_PATHS = frozenset({"/health", "/billing/webhook", "/favicon.ico", "/preferences/theme"})
ORGANIZATION_ROUTES = ("/dashboard", "/courses", "/profile", "/settings", "/analytics")

DASHBOARD_PATHS = {
    "learner": "/dashboard/learner",
    "instructor": "/dashboard/instructor",
    "admin": "/dashboard/admin",
}


def is_public_route(path: str) -> bool:
    return path in PUBLIC_ROUTES


def is_public_path(path: str) -> bool:
    """Public pages plus static assets and machine endpoints (health, webhook)."""
    return is_public_route(path) or path in SYSTEM_PUBLIC_PATHS or path.startswith("/static/")


def requires_auth(path: str) -> bool:
    return not is_public_route(path)


def requires_organization(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in ORGANIZATION_ROUTES)


def dashboard_path_for(profile: Optional[Profile]) -> str:
    role = profile.role if profile is not None else "learner"
    return DASHBOARD_PATHS.get(role, DASHBOARD_PATHS["learner"])


__all__ = [
    "DASHBOARD_PATHS",
    "ORGANIZATION_ROUTES",
    "PUBLIC_ROUTES",
    "dashboard_path_for",
    "is_public_path",
    "is_public_route",
    "requires_auth",
    "requires_organization",
]
