"""
Shared cookie helpers for the session and theme cookies.

Why:
    The session cookie policy must be identical wherever a cookie is set
    (sign-in, sign-up, logout). Keeping it here avoids drift between routers.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Response

SESSION_COOKIE_NAME = "clearcourse_session"
THEME_COOKIE_NAME = "clearcourse_theme"
# Opaque per-browser id so public forms (login, signup, contact) carry a CSRF token.
ANON_COOKIE_NAME = "clearcourse_anon"
THEMES = ("light", "dark")


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    SameSite=Lax keeps the cookie on top-level navigations such as the
    redirect back from Stripe Checkout or the password-reset link.
    """
    return {"secure": True, "samesite": "lax"}


def set_session_cookie(response: Response, value: str, *, environment: str, max_age: Optional[int] = None) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response: Response, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/", secure=opts["secure"], samesite=opts["samesite"],
                           httponly=True)


def normalize_theme(value: Optional[str]) -> str:
    return value if value in THEMES else "light"


def set_anon_cookie(response: Response, value: str, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=ANON_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
    )


def set_theme_cookie(response: Response, theme: str, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=THEME_COOKIE_NAME,
        value=normalize_theme(theme),
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=60 * 60 * 24 * 365,
    )
