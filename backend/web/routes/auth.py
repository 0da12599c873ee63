"""
Authentication routes: sign-in, sign-up, sign-out and password reset.

Why:
    Keep auth endpoints in a dedicated router. All provider calls go through
    `AuthService`, which maps failures to stable `AuthError` codes; this module
    only turns those codes into inline messages and redirects.

Notes:
    - A session record is created only when the profile could be loaded. A
      signed-in user without a readable profile would see a broken UI, so the
      sign-in is rolled back and an inline error is shown instead.
    - Session ids rotate on sign-in: the anonymous CSRF token is discarded and
      a fresh one is bound to the new session.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.datastore.ports import AuthGatewayError
from backend.identity_access.domain import AuthError, ImpersonationError
from backend.identity_access.stores import TokenMap
from backend.lms.validation import EMAIL_RULE, PASSWORD_RULE, ValidationRule, validate_form
from backend.web import app_state
from backend.web.auth_utils import clear_session_cookie, set_session_cookie
from backend.web.components import LoginForm, ResetPasswordForm, SignupForm
from backend.web.routing import dashboard_path_for

auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("clearcourse.web.auth")

NOTICES = {
    "signed_out": "You have been signed out.",
    "confirm_email": "Please check your email to confirm your account, then sign in.",
    "password_updated": "Your password has been updated. Please sign in.",
}
PROFILE_UNAVAILABLE = "Your profile could not be loaded. Please try again in a moment."
SIGNUP_RULES = {
    "full_name": ValidationRule(required=True, max_length=120, message="Please enter your name"),
    "email": EMAIL_RULE,
    "password": PASSWORD_RULE,
}

# Recovery tokens from the reset e-mail link, keyed by the browser's CSRF key.
_RECOVERY_BY_KEY = TokenMap(max_entries=1_000, ttl_seconds=3600)


def _auth_page(request: Request, title: str, form_html: str, *, status_code: int = 200) -> HTMLResponse:
    content = f"""
    <section class="auth-page">
        <div class="card auth-card">
            <h1>{title}</h1>
            {form_html}
        </div>
    </section>
    """
    return app_state.layout_response(
        request, title, content, status_code=status_code, headers={"Cache-Control": "private, no-store"}
    )


def _start_session(request: Request, result, *, target: Optional[str] = None):
    """Create the server-side session for a signed-in user and redirect."""
    settings = app_state.SETTINGS
    record = app_state.SESSION_STORE.create(
        user_id=result.user.id,
        email=result.user.email,
        access_token=result.user.access_token,
        refresh_token=result.user.refresh_token,
        profile=result.profile,
        ttl_seconds=settings.session_ttl_seconds,
    )
    response = app_state.redirect(target or dashboard_path_for(result.profile))
    set_session_cookie(
        response, record.session_id, environment=settings.environment, max_age=settings.session_ttl_seconds
    )
    response.headers["Cache-Control"] = "private, no-store"
    logger.info("auth.session.created user=%s role=%s", result.user.id, result.profile.role)
    return response


@auth_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, notice: Optional[str] = None):
    """Render the sign-in form.

    Permissions:
        Public. Signed-in users are redirected to their dashboard.
    """
    if app_state.session(request) is not None:
        return app_state.redirect(dashboard_path_for(app_state.profile(request)))
    form = LoginForm(app_state.csrf_token(request), notice=NOTICES.get(notice or ""))
    return _auth_page(request, "Sign in", form.render())


@auth_router.post("/login", response_class=HTMLResponse)
async def login_submit(request: Request):
    """Authenticate with e-mail and password.

    Behavior:
        - Invalid credentials or an unconfirmed e-mail re-render the form with
          an inline error (400) and keep the e-mail address.
        - A profile that stays unreadable after the bounded retry signs the
          user out again and answers 503 without creating a session.
        - Success: PRG redirect (303) to the role's dashboard.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    email = str(values.get("email") or "").strip()
    service = app_state.auth_service()
    try:
        result = service.sign_in(email, str(values.get("password") or ""))
    except AuthError as exc:
        form = LoginForm(app_state.csrf_token(request), email=email, error=exc.message)
        return _auth_page(request, "Sign in", form.render(), status_code=400)
    if result.profile is None:
        service.sign_out(result.user.access_token, result.user.refresh_token)
        form = LoginForm(app_state.csrf_token(request), email=email, error=PROFILE_UNAVAILABLE)
        return _auth_page(request, "Sign in", form.render(), status_code=503)
    return _start_session(request, result)


@auth_router.get("/signup", response_class=HTMLResponse)
async def signup_page(request: Request):
    if app_state.session(request) is not None:
        return app_state.redirect(dashboard_path_for(app_state.profile(request)))
    form = SignupForm(app_state.csrf_token(request))
    return _auth_page(request, "Create your account", form.render())


@auth_router.post("/signup", response_class=HTMLResponse)
async def signup_submit(request: Request):
    """Register a learner account.

    Behavior:
        - Field validation errors re-render the form (400) with per-field
          messages and the password strength meter.
        - When the provider requires e-mail confirmation, redirect to
          `/login?notice=confirm_email`.
        - Otherwise the new user is signed in and lands on the dashboard;
          users without an organization are sent on to the organization
          signup by the organization middleware.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    fields = {key: str(values.get(key) or "") for key in ("full_name", "email", "password")}
    fields["email"] = fields["email"].strip()
    errors = validate_form(fields, SIGNUP_RULES)
    if errors:
        form = SignupForm(
            app_state.csrf_token(request), values=fields, errors=errors, password_for_meter=fields["password"]
        )
        return _auth_page(request, "Create your account", form.render(), status_code=400)

    service = app_state.auth_service()
    try:
        result = service.sign_up(fields["email"], fields["password"], fields["full_name"])
    except AuthError as exc:
        if exc.code == "CONFIRMATION_REQUIRED":
            logger.info("auth.signup.confirmation_required")
            return app_state.redirect("/login?notice=confirm_email")
        form = SignupForm(app_state.csrf_token(request), values=fields, error=exc.message)
        return _auth_page(request, "Create your account", form.render(), status_code=400)
    if result.profile is None:
        service.sign_out(result.user.access_token, result.user.refresh_token)
        form = SignupForm(app_state.csrf_token(request), values=fields, error=PROFILE_UNAVAILABLE)
        return _auth_page(request, "Create your account", form.render(), status_code=503)
    return _start_session(request, result)


@auth_router.post("/logout")
async def logout(request: Request):
    """End the session (and any active impersonation) and clear the cookie.

    Permissions:
        Authenticated; CSRF-protected.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    record = app_state.session(request)
    if record is not None:
        if record.impersonation is not None:
            try:
                app_state.impersonation_service().end(record)
            except ImpersonationError as exc:
                logger.warning("auth.logout.impersonation_end_failed code=%s", exc.code)
        try:
            app_state.auth_service().sign_out(record.access_token, record.refresh_token)
        except AuthGatewayError as exc:
            logger.warning("auth.logout.provider_failed status=%s", exc.status)
        app_state._CSRF_BY_SESSION.pop(record.session_id)
        app_state.SESSION_STORE.delete(record.session_id)
        logger.info("auth.session.ended user=%s", record.user_id)
    response = app_state.redirect("/login?notice=signed_out")
    clear_session_cookie(response, environment=app_state.SETTINGS.environment)
    response.headers["Cache-Control"] = "private, no-store"
    return response


@auth_router.get("/reset-password", response_class=HTMLResponse)
async def reset_password_page(
    request: Request, access_token: Optional[str] = None, refresh_token: Optional[str] = None
):
    """Request form, or the new-password form when opened from the reset link.

    The link carries the provider's recovery tokens; they are kept server-side
    for the following POST and never rendered into the page.
    """
    key = app_state.csrf_key(request)
    if access_token and key:
        _RECOVERY_BY_KEY.set(key, (access_token, refresh_token))
    has_recovery = bool(key and key in _RECOVERY_BY_KEY)
    form = ResetPasswordForm(app_state.csrf_token(request), has_recovery_session=has_recovery)
    return _auth_page(request, "Reset password", form.render())


@auth_router.post("/reset-password", response_class=HTMLResponse)
async def reset_password_submit(request: Request):
    """Send the reset e-mail or, with recovery tokens, set the new password.

    Behavior:
        - The request step always shows the same notice so the page does not
          reveal whether an account exists.
        - The update step requires matching passwords (>= 6 characters) and
          redirects to `/login?notice=password_updated`.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    key = app_state.csrf_key(request)
    token = app_state.csrf_token(request)
    service = app_state.auth_service()
    recovery = _RECOVERY_BY_KEY.get(key) if key else None

    if recovery is None:
        email = str(values.get("email") or "").strip()
        try:
            service.reset_password(email)
        except AuthGatewayError as exc:
            logger.warning("auth.reset.request_failed status=%s", exc.status)
        notice = "If an account exists for that address, a reset link is on its way."
        return _auth_page(request, "Reset password", ResetPasswordForm(token, notice=notice).render())

    password = str(values.get("password") or "")
    if password != str(values.get("password_confirm") or ""):
        form = ResetPasswordForm(token, has_recovery_session=True, error="Passwords do not match.")
        return _auth_page(request, "Reset password", form.render(), status_code=400)
    try:
        service.update_password(recovery[0], recovery[1], password)
    except AuthError as exc:
        form = ResetPasswordForm(token, has_recovery_session=True, error=exc.message)
        return _auth_page(request, "Reset password", form.render(), status_code=400)
    _RECOVERY_BY_KEY.pop(key)
    return app_state.redirect("/login?notice=password_updated")
