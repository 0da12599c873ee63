"""
Super-admin routes: platform overview and impersonation start/end.

Why:
    Support staff need to see the platform as a given user sees it. The
    impersonation state lives on the server-side session record and every
    transition is confirmed by the backend RPC before the session changes.

Permissions:
    The *real* profile must carry `is_super_admin`. The effective profile is
    irrelevant here, so an active impersonation can always be ended.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.identity_access.domain import ImpersonationError
from backend.lms.super_admin import status_badge
from backend.web import app_state
from backend.web.components import Component, StatCard, csrf_input
from backend.web.routing import dashboard_path_for

super_admin_router = APIRouter(tags=["Super Admin"])
logger = logging.getLogger("clearcourse.web.super_admin")


def _access_denied(request: Request) -> HTMLResponse:
    content = (
        '<section class="empty-state"><h1>Access denied</h1>'
        "<p>This area is restricted to platform administrators.</p></section>"
    )
    return app_state.layout_response(request, "Access denied", content, status_code=403)


def _impersonate_form(user: dict, token: str) -> str:
    return (
        '<form method="post" action="/impersonation/start" class="inline-form">'
        f"{csrf_input(token)}"
        f'<input type="hidden" name="target_user_id" value="{Component.escape(user["id"])}">'
        '<input type="text" name="reason" maxlength="200" placeholder="Reason (optional)" '
        'class="form-input" aria-label="Reason">'
        '<button type="submit" class="btn btn--warning btn--sm">Impersonate</button>'
        "</form>"
    )


@super_admin_router.get("/super-admin", response_class=HTMLResponse)
async def super_admin_dashboard(request: Request, q: str = ""):
    """Organizations with owner, plan and status; platform stats; user picker."""
    real = app_state.actual_profile(request)
    if real is None or not real.is_super_admin:
        return _access_denied(request)
    record = app_state.session(request)
    if record.impersonation is not None:
        app_state.flash(request, "Exit the current impersonation first.", "warning")
        return app_state.redirect(dashboard_path_for(app_state.profile(request)))
    service = app_state.super_admin_service(request)
    try:
        overview = service.overview(real, q)
        users = service.users(real)
    except PermissionError:
        return _access_denied(request)

    token = app_state.csrf_token(request)
    stats = "".join(
        [
            StatCard("Organizations", overview.total_organizations).render(),
            StatCard("Users", overview.total_users).render(),
            StatCard("Active subscriptions", overview.active_subscriptions).render(),
            StatCard("Conversion rate", f"{overview.conversion_rate}%").render(),
        ]
    )
    org_rows = []
    for row in overview.filtered:
        org = row.organization
        css, label = status_badge(org.get("subscription_status"))
        org_rows.append(
            "<tr>"
            f"<td>{Component.escape(org.get('name'))}</td>"
            f"<td><code>{Component.escape(org.get('slug'))}</code></td>"
            f"<td>{Component.escape(row.owner_email or '-')}</td>"
            f"<td>{Component.escape(row.plan_label)}</td>"
            f"<td>{row.users}</td>"
            f'<td><span class="badge {css}">{Component.escape(label)}</span></td>'
            "</tr>"
        )
    orgs_html = "".join(org_rows) or '<tr><td colspan="6" class="empty-state">No organizations found.</td></tr>'
    user_rows = "".join(
        "<tr>"
        f"<td>{Component.escape(u.get('full_name') or '-')}</td>"
        f"<td>{Component.escape(u.get('email'))}</td>"
        f"<td>{Component.escape(u.get('role'))}</td>"
        f"<td>{'' if str(u['id']) == real.id else _impersonate_form(u, token)}</td>"
        "</tr>"
        for u in users
    )
    content = f"""
    <section class="dashboard">
        <header class="page-header"><h1>Platform overview</h1></header>
        <div class="stat-grid">{stats}</div>
        <div class="section-header">
            <h2>Organizations</h2>
            <form method="get" action="/super-admin" class="search-form" role="search">
                <input type="search" name="q" value="{Component.escape(q)}" class="form-input"
                       placeholder="Search name, slug or owner email" aria-label="Search organizations">
            </form>
        </div>
        <table class="table" id="organizations">
            <thead><tr><th>Name</th><th>Slug</th><th>Owner</th><th>Plan</th><th>Users</th><th>Status</th></tr></thead>
            <tbody>{orgs_html}</tbody>
        </table>
        <h2>Users</h2>
        <table class="table" id="platform-users">
            <thead><tr><th>Name</th><th>Email</th><th>Role</th><th>Impersonate</th></tr></thead>
            <tbody>{user_rows}</tbody>
        </table>
    </section>
    """
    return app_state.layout_response(request, "Super admin", content)


@super_admin_router.post("/impersonation/start")
async def impersonation_start(request: Request):
    """Start impersonating a user and land on their dashboard.

    Behavior:
        - The session switches only after the backend returned a session id.
        - Errors (forbidden, already active, unknown target, self) are shown
          as a flash message on the super-admin page.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    record = app_state.session(request)
    real = app_state.actual_profile(request)
    if real is None or not real.is_super_admin:
        return _access_denied(request)
    try:
        state = app_state.impersonation_service().start(
            record, str(values.get("target_user_id") or ""), str(values.get("reason") or "")
        )
    except ImpersonationError as exc:
        logger.info("impersonation.start.rejected admin=%s code=%s", real.id, exc.code)
        app_state.flash(request, exc.message, "error")
        return app_state.redirect("/super-admin")
    app_state.save_session(record)
    app_state.flash(request, f"You are now viewing the app as {state.target_profile.display_name}.", "warning")
    return app_state.redirect(dashboard_path_for(state.target_profile))


@super_admin_router.post("/impersonation/end")
async def impersonation_end(request: Request):
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    record = app_state.session(request)
    try:
        app_state.impersonation_service().end(record)
    except ImpersonationError as exc:
        app_state.flash(request, exc.message, "error")
        return app_state.redirect(dashboard_path_for(app_state.profile(request)))
    app_state.save_session(record)
    app_state.flash(request, "Impersonation ended.", "success")
    return app_state.redirect("/super-admin")
