"""
Account routes: profile, password change, legal consent and data export.

Why:
    Everything a user can do about their own account lives on `/profile`.
    Writes are blocked while impersonating (see the read-only middleware), so
    these handlers always act for the signed-in user.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, Response

from backend.datastore.ports import DatastoreError
from backend.identity_access.domain import AuthError
from backend.lms.legal import CURRENT_TERMS_VERSION
from backend.lms.organizations import parse_timestamp
from backend.web import app_state
from backend.web.components import CheckboxField, Component, TextInputField, csrf_input
from backend.web.components.forms import SubmitButton

account_router = APIRouter(tags=["Account"])
logger = logging.getLogger("clearcourse.web.account")


def _password_form(token: str, error: str = "") -> str:
    error_html = f'<p class="form-error" role="alert">{Component.escape(error)}</p>' if error else ""
    return f"""
    <form method="post" action="/profile/password" class="password-form" novalidate>
        {csrf_input(token)}
        {error_html}
        {TextInputField("current_password", "Current password", required=True).render(input_type="password", autocomplete="current-password")}
        {TextInputField("new_password", "New password", required=True, help_text="At least 8 characters.").render(input_type="password", autocomplete="new-password")}
        {TextInputField("confirm_password", "Confirm new password", required=True).render(input_type="password", autocomplete="new-password")}
        <div class="form-actions">{SubmitButton("Change password").render()}</div>
    </form>
    """


def _legal_section(request: Request, token: str, user_id: str) -> str:
    service = app_state.legal_service(request)
    try:
        accepted = service.has_accepted_terms(user_id)
        consent = service.marketing_consent(user_id)
    except DatastoreError as exc:
        logger.warning("account.legal.failed user=%s code=%s", user_id, exc.code)
        accepted, consent = False, False
    if accepted:
        log = service.acceptance_log(user_id)
        items = "".join(
            f"<li>{Component.escape(entry.get('document_type'))} v{Component.escape(entry.get('document_version'))}"
            f" &middot; {(parse_timestamp(entry.get('accepted_at')) or datetime.now(timezone.utc)).date().isoformat()}</li>"
            for entry in log
        )
        status_html = f'<p>You accepted the current terms.</p><ul class="acceptance-log">{items}</ul>'
    else:
        status_html = f"""
        <form method="post" action="/legal/accept" class="legal-form">
            {csrf_input(token)}
            <p>Please review and accept the <a href="/terms">terms of service</a> and the
               <a href="/privacy">privacy policy</a> (version {CURRENT_TERMS_VERSION}).</p>
            {CheckboxField("terms_accepted", "I accept the terms of service", required=True).render()}
            {CheckboxField("privacy_accepted", "I accept the privacy policy", required=True).render()}
            {CheckboxField("marketing_consent", "Send me product news by email", checked=consent).render()}
            <div class="form-actions">{SubmitButton("Accept").render()}</div>
        </form>
        """
    consent_form = f"""
    <form method="post" action="/profile/marketing" class="inline-form" id="marketing-consent">
        {csrf_input(token)}
        {CheckboxField("marketing_consent", "Send me product news by email", checked=consent).render()}
        {SubmitButton("Save preference", variant="secondary").render()}
    </form>
    """
    return status_html + consent_form


def _profile_page(request: Request, *, password_error: str = "", status_code: int = 200) -> HTMLResponse:
    current = app_state.profile(request)
    token = app_state.csrf_token(request)
    org_name = "-"
    if current.organization_id:
        org = app_state.organization_service(request).get(current.organization_id)
        org_name = (org or {}).get("name") or "-"
    created = parse_timestamp(current.created_at)
    content = f"""
    <section class="profile">
        <header class="page-header"><h1>Your profile</h1></header>
        <div class="card" id="profile-details">
            <dl class="details">
                <dt>Name</dt><dd>{Component.escape(current.full_name or "-")}</dd>
                <dt>Email</dt><dd>{Component.escape(current.email)}</dd>
                <dt>Role</dt><dd>{Component.escape(current.role.capitalize())}</dd>
                <dt>Organization</dt><dd>{Component.escape(org_name)}</dd>
                <dt>Member since</dt><dd>{created.date().isoformat() if created else "-"}</dd>
            </dl>
        </div>
        <section class="card" id="change-password"><h2>Change password</h2>{_password_form(token, password_error)}</section>
        <section class="card" id="legal"><h2>Terms and privacy</h2>{_legal_section(request, token, current.id)}</section>
        <section class="card" id="data-export">
            <h2>Your data</h2>
            <p>Download everything we store about you as a JSON file.</p>
            <a class="btn btn--secondary" href="/profile/export">Export my data</a>
        </section>
    </section>
    """
    return app_state.layout_response(request, "Profile", content, status_code=status_code)


@account_router.get("/profile", response_class=HTMLResponse)
async def profile_page(request: Request):
    return _profile_page(request)


@account_router.post("/profile/password", response_class=HTMLResponse)
async def change_password(request: Request):
    """Verify the current password, then set the new one.

    Behavior:
        - Mismatched confirmation, a wrong current password or a weak new
          password re-render the profile page (400) with an inline error.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    record = app_state.session(request)
    new_password = str(values.get("new_password") or "")
    if new_password != str(values.get("confirm_password") or ""):
        return _profile_page(request, password_error="The new passwords do not match.", status_code=400)
    try:
        app_state.auth_service().change_password(
            record.email, str(values.get("current_password") or ""), new_password
        )
    except AuthError as exc:
        logger.info("account.password.rejected user=%s code=%s", record.user_id, exc.code)
        return _profile_page(request, password_error=exc.message, status_code=400)
    app_state.flash(request, "Your password was changed.", "success")
    return app_state.redirect("/profile")


@account_router.post("/legal/accept")
async def accept_legal(request: Request):
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    try:
        app_state.legal_service(request).accept_terms(
            terms_accepted=bool(values.get("terms_accepted")),
            privacy_accepted=bool(values.get("privacy_accepted")),
            marketing_consent=bool(values.get("marketing_consent")),
        )
    except ValueError:
        app_state.flash(request, "Please accept both the terms of service and the privacy policy.", "error")
        return app_state.redirect("/profile")
    except DatastoreError as exc:
        logger.error("account.legal.accept_failed user=%s code=%s", current.id, exc.code)
        app_state.flash(request, "Your acceptance could not be saved. Please try again.", "error")
        return app_state.redirect("/profile")
    logger.info("account.legal.accepted user=%s version=%s", current.id, CURRENT_TERMS_VERSION)
    app_state.flash(request, "Thank you for accepting the terms.", "success")
    return app_state.redirect("/profile")


@account_router.post("/profile/marketing")
async def update_marketing(request: Request):
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    consent = bool(values.get("marketing_consent"))
    try:
        app_state.legal_service(request).update_marketing_consent(current.id, consent)
    except DatastoreError as exc:
        logger.error("account.marketing.failed user=%s code=%s", current.id, exc.code)
        app_state.flash(request, "Your preference could not be saved.", "error")
        return app_state.redirect("/profile")
    app_state.flash(request, "Email preference saved.", "success")
    return app_state.redirect("/profile")


@account_router.get("/profile/export")
async def export_data(request: Request):
    """Download profile, enrollments, progress and consent history as JSON."""
    current = app_state.profile(request)
    now = datetime.now(timezone.utc)
    try:
        data = app_state.legal_service(request).export_user_data(current.id, now=now)
    except DatastoreError as exc:
        logger.error("account.export.failed user=%s code=%s", current.id, exc.code)
        app_state.flash(request, "Your data could not be exported. Please try again.", "error")
        return app_state.redirect("/profile")
    filename = f"clearcourse-export-{now.strftime('%Y%m%d')}.json"
    logger.info("account.export user=%s", current.id)
    return Response(
        content=json.dumps(data, indent=2, default=str),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "private, no-store",
        },
    )
