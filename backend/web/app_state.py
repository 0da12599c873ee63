"""
Process-wide wiring shared by `main` and the routers.

Why:
    Routers must see the same settings, backend, session store and CSRF
    tokens as the middleware. Keeping them in one module (instead of importing
    `main` from routers) avoids import cycles, and `configure()` lets tests
    swap in the in-memory backend and zero the retry delays.

Behavior:
    - Module globals are read at call time, so `configure()` takes effect for
      every later request.
    - Services are cheap dataclasses built per request around a datastore
      bound to the caller's access token (row-level security).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
import sys
import time
from typing import Callable, Optional, Tuple

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse

from backend.datastore.ports import DatastoreProtocol
from backend.datastore.wiring import Backend, build_backend
from backend.identity_access.auth_service import AuthService
from backend.identity_access.domain import Profile
from backend.identity_access.impersonation import ImpersonationService, effective_profile, real_profile
from backend.identity_access.stores import SessionRecord, SessionStore, TokenMap
from backend.lms.admin import AdminService
from backend.lms.billing import StripeClient, WebhookHandler
from backend.lms.email import Mailer, create_email_provider
from backend.lms.files import FileService
from backend.lms.learning import LearningService
from backend.lms.legal import LegalService
from backend.lms.organizations import OrganizationContext, OrganizationService
from backend.lms.super_admin import SuperAdminService
from backend.lms.support import SupportService
from backend.lms.teaching import TeachingService
from backend.web.auth_utils import THEME_COOKIE_NAME, normalize_theme
from backend.web.components import Layout
from backend.web.config import Settings, load_settings
from backend.web.routing import dashboard_path_for

logger = logging.getLogger("clearcourse.web")


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _build_session_store(settings: Settings, *, under_pytest: Optional[bool] = None):
    """Postgres store for `SESSIONS_BACKEND=db`, in-memory otherwise and under pytest."""
    if under_pytest is None:
        under_pytest = _under_pytest()
    if settings.sessions_backend == "db" and not under_pytest:
        from backend.identity_access.stores_db import DBSessionStore

        return DBSessionStore()
    return SessionStore()


SETTINGS: Settings = load_settings()
BACKEND: Backend = build_backend(SETTINGS)
SESSION_STORE = _build_session_store(SETTINGS)
MAILER: Mailer = Mailer(create_email_provider(SETTINGS), SETTINGS.app_base_url)
STRIPE: StripeClient = StripeClient(SETTINGS.stripe_secret_key)
SLEEP: Callable[[float], None] = time.sleep

# Per-session CSRF tokens. Anonymous browsers get a token derived from their
# anonymous id instead, so cookieless clients add nothing here.
_CSRF_BY_SESSION = TokenMap()
_ANON_CSRF_SECRET = secrets.token_bytes(32)


def configure(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[Backend] = None,
    session_store=None,
    mailer: Optional[Mailer] = None,
    stripe: Optional[StripeClient] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> None:
    """(Re)wire the process state; used at startup and by tests."""
    global SETTINGS, BACKEND, SESSION_STORE, MAILER, STRIPE, SLEEP
    SETTINGS = settings or load_settings()
    BACKEND = backend or build_backend(SETTINGS)
    SESSION_STORE = session_store if session_store is not None else _build_session_store(SETTINGS)
    MAILER = mailer or Mailer(create_email_provider(SETTINGS), SETTINGS.app_base_url)
    STRIPE = stripe or StripeClient(SETTINGS.stripe_secret_key)
    SLEEP = sleep or time.sleep
    _CSRF_BY_SESSION.clear()


# --- Session helpers ---------------------------------------------------------------


def session(request: Request) -> Optional[SessionRecord]:
    return getattr(request.state, "session", None)


def save_session(record: SessionRecord) -> None:
    SESSION_STORE.save(record)


def profile(request: Request) -> Optional[Profile]:
    """Effective profile: the impersonated user while impersonation is active."""
    return effective_profile(session(request))


def actual_profile(request: Request) -> Optional[Profile]:
    return real_profile(session(request))


def flash(request: Request, message: str, kind: str = "info") -> None:
    record = session(request)
    if record is None:
        return
    record.push_flash(message, kind)
    save_session(record)


def theme(request: Request) -> str:
    return normalize_theme(request.cookies.get(THEME_COOKIE_NAME))


# --- CSRF ---------------------------------------------------------------------------


def csrf_key(request: Request) -> str:
    """Session id for signed-in users, a per-browser anonymous id otherwise."""
    record = session(request)
    if record is not None:
        return record.session_id
    return getattr(request.state, "anon_id", "") or ""


def get_or_create_csrf_token(session_id: str) -> str:
    token = _CSRF_BY_SESSION.get(session_id)
    if not token:
        token = secrets.token_urlsafe(24)
        _CSRF_BY_SESSION.set(session_id, token)
    return token


def anon_csrf_token(anon_id: str) -> str:
    return hmac.new(_ANON_CSRF_SECRET, anon_id.encode(), hashlib.sha256).hexdigest()


def _expected_csrf_token(request: Request) -> Optional[str]:
    record = session(request)
    if record is not None:
        return _CSRF_BY_SESSION.get(record.session_id)
    anon_id = getattr(request.state, "anon_id", "") or ""
    return anon_csrf_token(anon_id) if anon_id else None


def validate_csrf(expected: Optional[str], form_value: Optional[str]) -> bool:
    if not expected or not form_value:
        return False
    return hmac.compare_digest(expected, str(form_value))


def csrf_token(request: Request) -> str:
    record = session(request)
    if record is not None:
        return get_or_create_csrf_token(record.session_id)
    anon_id = getattr(request.state, "anon_id", "") or ""
    return anon_csrf_token(anon_id) if anon_id else ""


async def read_form(request: Request) -> Tuple[dict, bool]:
    """Parse the submitted form and check its CSRF token.

    Returns (values, csrf_ok). File uploads stay available under their field
    name as Starlette `UploadFile` objects.
    """
    form = await request.form()
    values = {key: form.get(key) for key in form.keys()}
    ok = validate_csrf(_expected_csrf_token(request), values.get("csrf_token"))
    if not ok:
        logger.warning("web.csrf.rejected path=%s", request.url.path)
    return values, ok


def csrf_error() -> HTMLResponse:
    return HTMLResponse("CSRF Error", status_code=403, headers={"Cache-Control": "private, no-store"})


# --- Responses ----------------------------------------------------------------------


def redirect(url: str, status_code: int = 303) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status_code)


def layout_response(
    request: Request,
    title: str,
    content: str,
    *,
    status_code: int = 200,
    headers: Optional[dict[str, str]] = None,
    show_nav: bool = True,
) -> HTMLResponse:
    """Render the page inside the Layout and return an HTMLResponse.

    Behavior:
        - Returns only the `<main>` fragment for HTMX requests.
        - Pops one-shot flash messages from the session and saves it.
        - Personalized pages default to `Cache-Control: private, no-store`.
    Permissions:
        None. Route handlers enforce role checks before calling this helper.
    """
    record = session(request)
    messages = record.pop_flash() if record is not None else []
    if record is not None and messages:
        save_session(record)
    real = real_profile(record)
    layout = Layout(
        title,
        content,
        profile=effective_profile(record),
        current_path=request.url.path,
        csrf_token=csrf_token(request),
        flash=messages,
        impersonation=record.impersonation if record is not None else None,
        show_super_admin=bool(real and real.is_super_admin and record.impersonation is None),
        theme=theme(request),
        show_nav=show_nav,
    )
    body = layout.render_fragment() if request.headers.get("HX-Request") else layout.render()
    response = HTMLResponse(content=body, status_code=status_code)
    if record is not None and not (headers and "Cache-Control" in headers):
        response.headers["Cache-Control"] = "private, no-store"
    if headers:
        for key, value in headers.items():
            response.headers[key] = value
    return response


def require_role(request: Request, *roles: str) -> Optional[RedirectResponse]:
    """Return a redirect when the effective profile lacks one of `roles`, else None."""
    current = profile(request)
    if current is None:
        return redirect("/login", 302)
    if current.role not in roles:
        flash(request, "You do not have access to that page.", "warning")
        return redirect(dashboard_path_for(current))
    return None


def not_found(request: Request, message: str = "The page you requested does not exist.") -> HTMLResponse:
    content = (
        '<section class="empty-state"><h1>Not found</h1>'
        f"<p>{Layout.escape(message)}</p>"
        f'<p><a class="btn btn--primary" href="{dashboard_path_for(profile(request))}">Back to dashboard</a></p>'
        "</section>"
    )
    return layout_response(request, "Not found", content, status_code=404)


# --- Services -----------------------------------------------------------------------


def datastore(request: Request) -> DatastoreProtocol:
    record = session(request)
    return BACKEND.datastore_for(record.access_token if record is not None else None)


def auth_service() -> AuthService:
    return AuthService.from_settings(BACKEND, SETTINGS, sleep=SLEEP)


def impersonation_service() -> ImpersonationService:
    return ImpersonationService(BACKEND)


def organization_service(request: Request) -> OrganizationService:
    return OrganizationService(datastore(request), sleep=SLEEP)


def organization_context(request: Request) -> OrganizationContext:
    current = profile(request)
    return OrganizationContext.load(organization_service(request), current.organization_id if current else None)


def learning_service(request: Request) -> LearningService:
    return LearningService(datastore(request))


def file_service(request: Request) -> FileService:
    record = session(request)
    return FileService(BACKEND.files_for(record.access_token if record is not None else None))


def teaching_service(request: Request) -> TeachingService:
    return TeachingService(datastore(request), files=file_service(request))


def admin_service(request: Request) -> AdminService:
    return AdminService(datastore(request), BACKEND.auth, mailer=MAILER)


def super_admin_service(request: Request) -> SuperAdminService:
    return SuperAdminService(datastore(request))


def support_service(request: Request) -> SupportService:
    return SupportService(datastore(request))


def legal_service(request: Request) -> LegalService:
    return LegalService(datastore(request))


def webhook_handler() -> WebhookHandler:
    return WebhookHandler(BACKEND.service_datastore(), mailer=MAILER)
