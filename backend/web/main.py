"ClearCourse Studio"
from __future__ import annotations

import logging
import os
import secrets
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via CLEARCOURSE_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("CLEARCOURSE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv  # noqa: E402

if _should_load_dotenv():
    load_dotenv()

from backend.web.config import ensure_secure_config_on_startup, validate_environment  # noqa: E402
from backend.web.logging_config import configure_logging  # noqa: E402

# Fail fast on insecure production configuration before anything is wired.
ensure_secure_config_on_startup()

from backend.web import app_state  # noqa: E402
from backend.web.auth_utils import ANON_COOKIE_NAME, SESSION_COOKIE_NAME, set_anon_cookie  # noqa: E402
from backend.web.routes.account import account_router  # noqa: E402
from backend.web.routes.admin import admin_router  # noqa: E402
from backend.web.routes.auth import auth_router  # noqa: E402
from backend.web.routes.learning import learning_router  # noqa: E402
from backend.web.routes.organizations import organizations_router  # noqa: E402
from backend.web.routes.pages import pages_router  # noqa: E402
from backend.web.routes.super_admin import super_admin_router  # noqa: E402
from backend.web.routes.support import support_router  # noqa: E402
from backend.web.routes.teaching import teaching_router  # noqa: E402
from backend.web.routing import dashboard_path_for, is_public_path, requires_organization  # noqa: E402

configure_logging(app_state.SETTINGS.environment)
logger = logging.getLogger("clearcourse.web")


def _log_environment_report() -> None:
    report = validate_environment(app_state.SETTINGS)
    for message in report.errors:
        logger.error("config.invalid %s", message)
    for message in report.warnings:
        logger.warning("config.warning %s", message)
    if app_state.BACKEND.memory is not None:
        logger.warning("config.datastore.memory data is kept in process memory only")


_log_environment_report()

app = FastAPI(title="ClearCourse Studio", description="Course platform for teams", version="1.0.0")

# --- Static Files ----------------------------------------------------------------

static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

# Writes that stay allowed while a super-admin is viewing the app as someone else.
IMPERSONATION_WRITE_ALLOWLIST = frozenset({"/impersonation/end", "/logout", "/preferences/theme"})
ORGANIZATION_SIGNUP_PATH = "/organizations/new"
# Machine endpoints never get an anonymous browser id.
MACHINE_PATHS = frozenset({"/health", "/billing/webhook", "/favicon.ico"})

# --- Middleware ----------------------------------------------------------------------
# Registration order matters: the last registered middleware runs first. Session
# resolution must run before the impersonation guard, and the security headers
# wrap every response including redirects.


@app.middleware("http")
async def impersonation_read_only(request: Request, call_next):
    """Block writes while impersonating; only leaving the view is allowed."""
    record = getattr(request.state, "session", None)
    if (
        record is not None
        and record.impersonation is not None
        and request.method not in ("GET", "HEAD", "OPTIONS")
        and request.url.path not in IMPERSONATION_WRITE_ALLOWLIST
    ):
        logger.info(
            "impersonation.write.blocked admin=%s path=%s", record.user_id, request.url.path
        )
        record.push_flash("Changes are disabled while impersonating. Exit impersonation first.", "warning")
        app_state.save_session(record)
        return RedirectResponse(url=dashboard_path_for(app_state.profile(request)), status_code=303)
    return await call_next(request)


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Resolve the session and enforce authentication and organization membership.

    Behavior:
        - Every request gets `request.state.session` (or None). Anonymous
          browsers get a stable anonymous id so public forms carry CSRF tokens.
        - Protected paths without a session: HTML -> 302 `/login`,
          `/api/*` -> 401 JSON, HTMX -> 401 with `HX-Redirect`.
        - Organization pages require an organization on the effective profile;
          users without one are sent to the organization signup. Real
          super-admins are exempt.
    """
    path = request.url.path
    request.state.session = None
    request.state.anon_id = None
    if path.startswith("/static/"):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = app_state.SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)
    request.state.session = rec

    new_anon_id = None
    if rec is None:
        request.state.anon_id = request.cookies.get(ANON_COOKIE_NAME)
        if not request.state.anon_id and path not in MACHINE_PATHS:
            new_anon_id = secrets.token_urlsafe(24)
            request.state.anon_id = new_anon_id

    if rec is None and not is_public_path(path):
        if path.startswith("/api/"):
            headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
            return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
        if "HX-Request" in request.headers:
            return Response(
                status_code=401,
                headers={"HX-Redirect": "/login", "Cache-Control": "private, no-store", "Vary": "HX-Request"},
            )
        return RedirectResponse(url="/login", status_code=302)

    if rec is not None and requires_organization(path):
        effective = app_state.profile(request)
        real = app_state.actual_profile(request)
        exempt = bool(real and real.is_super_admin)
        if effective is not None and not effective.organization_id and not exempt:
            return RedirectResponse(url=ORGANIZATION_SIGNUP_PATH, status_code=303)

    response = await call_next(request)
    if new_anon_id:
        set_anon_cookie(response, new_anon_id, environment=app_state.SETTINGS.environment)
    return response


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    supabase_origin = ""
    if app_state.SETTINGS.supabase_url:
        supabase_origin = " " + app_state.SETTINGS.supabase_url.rstrip("/")
    frames = "https://www.youtube-nocookie.com https://www.youtube.com https://player.vimeo.com"
    if app_state.SETTINGS.is_production:
        # No inline script or style in production.
        csp = (
            "default-src 'self'; script-src 'self'; style-src 'self'; "
            f"img-src 'self' data: https:; media-src 'self' https:; font-src 'self' data:; "
            f"connect-src 'self'{supabase_origin}; frame-src {frames}; form-action 'self' https://checkout.stripe.com;"
        )
    else:
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            f"img-src 'self' data: https:; media-src 'self' data: https:; font-src 'self' data:; "
            f"connect-src 'self'{supabase_origin}; frame-src {frames};"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if app_state.SETTINGS.is_production:
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Routers ---------------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(learning_router)
app.include_router(teaching_router)
app.include_router(admin_router)
app.include_router(super_admin_router)
app.include_router(organizations_router)
app.include_router(support_router)
app.include_router(account_router)
app.include_router(pages_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})
