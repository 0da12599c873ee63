"""
Organization admin routes: statistics and user management.

Permissions:
    Admin role (effective profile). Target users are limited to the admin's
    organization by row-level security and by the role-update RPC.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.datastore.ports import DatastoreError
from backend.identity_access.domain import ALLOWED_ROLES
from backend.lms.admin import AdminActionError
from backend.lms.organizations import parse_timestamp
from backend.web import app_state
from backend.web.components import Component, SelectField, StatCard, TextInputField, csrf_input
from backend.web.components.forms import SubmitButton

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("clearcourse.web.admin")

ROLE_OPTIONS = [(role, role.capitalize()) for role in ("learner", "instructor", "admin")]
ERRORS = {
    "invalid_email": "Please enter a valid email address.",
    "invalid_role": "Please choose a valid role.",
    "invalid_password": "The password must be at least 8 characters long.",
    "user_not_found": "That user no longer exists.",
    "forbidden": "You do not have permission to manage users.",
}


def _subscription_notice(ctx) -> str:
    org = ctx.organization or {}
    status = ctx.status or "unknown"
    if status == "trial":
        ends = parse_timestamp(org.get("trial_ends_at"))
        if ctx.is_trial_expired:
            return '<p class="notice notice--warning">Your trial has ended. <a href="/settings/billing">Choose a plan</a> to keep going.</p>'
        if ends is not None:
            return f'<p class="notice">Trial ends on {ends.date().isoformat()}. <a href="/settings/billing">Upgrade</a></p>'
    if status == "past_due":
        return '<p class="notice notice--warning">Your last payment failed. <a href="/settings/billing">Update billing</a></p>'
    return f'<p class="text-muted">Subscription status: {Component.escape(status.replace("_", " "))}</p>'


def _user_row(user: dict, current_id: str, token: str) -> str:
    uid = str(user["id"])
    base = f"/admin/users/{quote(uid)}"
    is_self = uid == current_id
    role_options = "".join(
        f'<option value="{r}"{" selected" if user.get("role") == r else ""}>{label}</option>' for r, label in ROLE_OPTIONS
    )
    role_cell = (
        f'<span class="badge">{Component.escape(user.get("role"))}</span>'
        if is_self
        else (
            f'<form method="post" action="{base}/role" class="inline-form">{csrf_input(token)}'
            f'<select name="role" class="form-input" aria-label="Role">{role_options}</select>'
            '<button type="submit" class="btn btn--secondary btn--sm">Update</button></form>'
        )
    )
    email_cell = (
        f'<form method="post" action="{base}/email" class="inline-form">{csrf_input(token)}'
        f'<input type="email" name="email" value="{Component.escape(user.get("email"))}" class="form-input" '
        'aria-label="Email" required>'
        '<button type="submit" class="btn btn--secondary btn--sm">Save</button></form>'
    )
    delete_cell = (
        ""
        if is_self
        else (
            f'<form method="post" action="{base}/delete" class="inline-form" '
            'data-confirm="Delete this user permanently?">'
            f'{csrf_input(token)}<button type="submit" class="btn btn--danger btn--sm">Delete</button></form>'
        )
    )
    return (
        f'<tr id="user-{Component.escape(uid)}">'
        f"<td>{Component.escape(user.get('full_name') or '-')}</td>"
        f"<td>{email_cell}</td><td>{role_cell}</td><td>{delete_cell}</td>"
        "</tr>"
    )


@admin_router.get("/dashboard/admin", response_class=HTMLResponse)
async def admin_dashboard(request: Request):
    """Organization stats, subscription status and the user list."""
    denied = app_state.require_role(request, "admin")
    if denied is not None:
        return denied
    current = app_state.profile(request)
    token = app_state.csrf_token(request)
    service = app_state.admin_service(request)
    ctx = app_state.organization_context(request)
    try:
        stats = service.stats(current.organization_id)
        users = service.list_users(current.organization_id)
    except DatastoreError as exc:
        logger.error("admin.dashboard.failed org=%s code=%s", current.organization_id, exc.code)
        app_state.flash(request, "Organization data could not be loaded.", "error")
        return app_state.layout_response(request, "Admin dashboard", "<h1>Admin dashboard</h1>")

    cards = "".join(
        [
            StatCard("Users", stats.total_users).render(),
            StatCard("Instructors", stats.instructors).render(),
            StatCard("Learners", stats.learners).render(),
            StatCard("Courses", stats.total_courses).render(),
            StatCard("Enrollments", stats.total_enrollments).render(),
        ]
    )
    rows = "".join(_user_row(u, current.id, token) for u in users)
    password_field = TextInputField(
        "new_password", "Temporary password", required=True, name="password", help_text="At least 8 characters."
    ).render(input_type="password", autocomplete="new-password")
    create_form = f"""
    <form method="post" action="/admin/users" class="admin-create-user">
        {csrf_input(token)}
        {TextInputField("new_full_name", "Full name", required=True, name="full_name").render(autocomplete="off")}
        {TextInputField("new_email", "Email", required=True, name="email").render(input_type="email", autocomplete="off")}
        {password_field}
        {SelectField("new_role", "Role", name="role").render(ROLE_OPTIONS, value="learner")}
        <div class="form-actions">{SubmitButton("Create user").render()}</div>
    </form>
    """
    org_name = Component.escape((ctx.organization or {}).get("name") or "Your organization")
    content = f"""
    <section class="dashboard">
        <header class="page-header"><h1>{org_name}</h1></header>
        {_subscription_notice(ctx)}
        <div class="stat-grid">{cards}</div>
        <h2>Users</h2>
        <table class="table" id="org-users">
            <thead><tr><th>Name</th><th>Email</th><th>Role</th><th></th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
        <section class="card" id="create-user"><h2>Add a user</h2>{create_form}</section>
    </section>
    """
    return app_state.layout_response(request, "Admin dashboard", content)


async def _admin_action(request: Request, action, success: str):
    denied = app_state.require_role(request, "admin")
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    try:
        action(app_state.admin_service(request), current, values)
    except AdminActionError as exc:
        app_state.flash(request, exc.message, "error")
    except (ValueError, LookupError, PermissionError) as exc:
        app_state.flash(request, ERRORS.get(str(exc), "The action failed."), "error")
    except DatastoreError as exc:
        logger.error("admin.action.failed actor=%s code=%s", current.id, exc.code)
        app_state.flash(request, "The change could not be saved. Please try again.", "error")
    else:
        app_state.flash(request, success, "success")
    return app_state.redirect("/dashboard/admin")


@admin_router.post("/admin/users")
async def create_user(request: Request):
    """Create a user in the admin's organization and send the invitation e-mail.

    The organization's instructor/learner limits are checked first.
    """
    ctx = app_state.organization_context(request)

    def action(service, actor, values):
        role = str(values.get("role") or "learner")
        if role == "instructor" and not ctx.can_invite_instructor():
            raise AdminActionError("Your plan's instructor limit has been reached.")
        if role == "learner" and not ctx.can_invite_learner():
            raise AdminActionError("Your plan's learner limit has been reached.")
        service.create_user(
            actor,
            email=str(values.get("email") or ""),
            password=str(values.get("password") or ""),
            full_name=str(values.get("full_name") or ""),
            role=role,
            organization_name=(ctx.organization or {}).get("name") or "",
            login_url=f"{app_state.SETTINGS.app_base_url}/login",
        )

    return await _admin_action(request, action, "User created and invitation sent.")


@admin_router.post("/admin/users/{user_id}/role")
async def update_role(request: Request, user_id: str):
    def action(service, actor, values):
        role = str(values.get("role") or "")
        if role not in ALLOWED_ROLES:
            raise ValueError("invalid_role")
        service.update_role(actor, user_id, role)

    return await _admin_action(request, action, "Role updated.")


@admin_router.post("/admin/users/{user_id}/email")
async def update_email(request: Request, user_id: str):
    def action(service, actor, values):
        service.update_email(actor, user_id, str(values.get("email") or ""))

    return await _admin_action(request, action, "Email updated.")


@admin_router.post("/admin/users/{user_id}/delete")
async def delete_user(request: Request, user_id: str):
    def action(service, actor, values):
        service.delete_user(actor, user_id)

    return await _admin_action(request, action, "User deleted.")
