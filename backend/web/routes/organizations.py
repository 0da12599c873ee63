"""
Organization routes: organization signup, branding settings and billing.

Why:
    A signed-in user without an organization is sent here by the
    organization middleware. After the organization exists, the profile is
    re-read until it shows the new organization and the admin role, so the
    next page renders the admin dashboard instead of bouncing back.

Permissions:
    - `/organizations/new`: any signed-in user without an organization.
    - Settings and checkout: admin role (effective profile).
    - `/billing/webhook`: public, authenticated by the Stripe signature.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse

from backend.datastore.ports import DatastoreError
from backend.lms.billing import BILLING_CYCLES, BillingError, SignatureVerificationError, construct_event
from backend.lms.organizations import DEFAULT_PRIMARY_COLOR, DEFAULT_SECONDARY_COLOR, parse_timestamp
from backend.lms.validation import HEX_COLOR_RE
from backend.web import app_state
from backend.web.components import Component, StatCard, TextInputField, csrf_input
from backend.web.components.forms import SubmitButton
from backend.web.routing import dashboard_path_for

organizations_router = APIRouter(tags=["Organizations"])
logger = logging.getLogger("clearcourse.web.organizations")

SIGNUP_ERRORS = {
    "slug_taken": "That URL slug is already taken. Please choose another one.",
    "invalid_slug": "Please enter a slug with letters or numbers.",
    "invalid_promo_code": "That promo code is not valid.",
    "invalid_name": "Please enter an organization name (max. 100 characters).",
    "invalid_color": "Colors must use the #RRGGBB format.",
}
CYCLE_LABELS = {"monthly": "Monthly", "yearly": "Yearly"}


def _signup_form(token: str, values: dict, errors: dict) -> str:
    name = TextInputField("name", "Organization name", required=True, error_text=errors.get("name"))
    slug = TextInputField(
        "slug", "URL slug", help_text="Lowercase letters, numbers and dashes. Leave empty to derive it from the name.",
        error_text=errors.get("slug"),
    )
    primary = TextInputField("primary_color", "Primary color", error_text=errors.get("primary_color"))
    secondary = TextInputField("secondary_color", "Secondary color", error_text=errors.get("secondary_color"))
    promo = TextInputField("promo_code", "Promo code", error_text=errors.get("promo_code"))
    general = errors.get("general")
    error_html = f'<p class="form-error" role="alert">{Component.escape(general)}</p>' if general else ""
    return f"""
    <form method="post" action="/organizations/new" class="org-signup-form" novalidate>
        {csrf_input(token)}
        {error_html}
        {name.render(value=values.get("name", ""), autocomplete="organization")}
        {slug.render(value=values.get("slug", ""), autocomplete="off")}
        {primary.render(value=values.get("primary_color") or DEFAULT_PRIMARY_COLOR, input_type="color")}
        {secondary.render(value=values.get("secondary_color") or DEFAULT_SECONDARY_COLOR, input_type="color")}
        {promo.render(value=values.get("promo_code", ""), autocomplete="off")}
        <div class="form-actions">{SubmitButton("Create organization", full_width=True).render()}</div>
    </form>
    """


def _signup_page(request: Request, values: dict, errors: dict, *, status_code: int = 200) -> HTMLResponse:
    content = f"""
    <section class="auth-page">
        <div class="card auth-card">
            <h1>Set up your organization</h1>
            <p class="text-muted">Start with a free 14-day trial. No credit card required.</p>
            {_signup_form(app_state.csrf_token(request), values, errors)}
        </div>
    </section>
    """
    return app_state.layout_response(request, "Create organization", content, status_code=status_code)


def _color_errors(values: dict) -> dict:
    errors = {}
    for key in ("primary_color", "secondary_color"):
        value = values.get(key, "")
        if value and not HEX_COLOR_RE.match(value):
            errors[key] = SIGNUP_ERRORS["invalid_color"]
    return errors


@organizations_router.get("/organizations/new", response_class=HTMLResponse)
async def organization_signup_page(request: Request):
    current = app_state.profile(request)
    if current is not None and current.organization_id:
        return app_state.redirect(dashboard_path_for(current))
    return _signup_page(request, {}, {})


@organizations_router.post("/organizations/new", response_class=HTMLResponse)
async def organization_signup_submit(request: Request):
    """Create the organization, make the caller its admin and open the dashboard.

    Behavior:
        - Slug conflicts, invalid promo codes and malformed colours re-render
          the form (400).
        - The profile is polled until the organization link is visible, then
          the session's cached profile is refreshed.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    record = app_state.session(request)
    current = app_state.profile(request)
    if current.organization_id:
        return app_state.redirect(dashboard_path_for(current))

    fields = {
        key: str(values.get(key) or "").strip()
        for key in ("name", "slug", "primary_color", "secondary_color", "promo_code")
    }
    errors = _color_errors(fields)
    if not fields["name"]:
        errors["name"] = SIGNUP_ERRORS["invalid_name"]
    if errors:
        return _signup_page(request, fields, errors, status_code=400)

    service = app_state.organization_service(request)
    try:
        org = service.signup(
            user_id=current.id,
            owner_email=current.email,
            owner_name=current.full_name or "",
            name=fields["name"],
            slug=fields["slug"] or None,
            primary_color=fields["primary_color"] or None,
            secondary_color=fields["secondary_color"] or None,
            promo_code=fields["promo_code"] or None,
            mailer=app_state.MAILER,
        )
    except ValueError as exc:
        code = str(exc)
        field_name = {"slug_taken": "slug", "invalid_slug": "slug", "invalid_promo_code": "promo_code"}.get(
            code, "general"
        )
        errors[field_name] = SIGNUP_ERRORS.get(code, "The organization could not be created.")
        return _signup_page(request, fields, errors, status_code=400)
    except DatastoreError as exc:
        logger.error("org.signup.failed user=%s code=%s", current.id, exc.code)
        errors["general"] = "The organization could not be created. Please try again."
        return _signup_page(request, fields, errors, status_code=500)

    if not service.wait_for_profile_link(current.id, org["id"]):
        app_state.flash(request, "Your organization was created. It may take a moment to appear.", "warning")
    refreshed = app_state.auth_service().refetch_profile(record)
    app_state.save_session(record)
    app_state.flash(request, f"Welcome to {org['name']}! Your trial has started.", "success")
    return app_state.redirect(dashboard_path_for(refreshed or current))


# --- Branding -----------------------------------------------------------------------


def _settings_page(request: Request, org: dict, values: dict, errors: dict, *, status_code: int = 200):
    token = app_state.csrf_token(request)
    name = TextInputField("name", "Organization name", required=True, error_text=errors.get("name"))
    primary = TextInputField("primary_color", "Primary color", error_text=errors.get("primary_color"))
    secondary = TextInputField("secondary_color", "Secondary color", error_text=errors.get("secondary_color"))
    content = f"""
    <section class="settings">
        <header class="page-header"><h1>Organization settings</h1></header>
        <div class="card">
            <p class="text-muted">URL slug: <code>{Component.escape(org.get("slug"))}</code></p>
            <form method="post" action="/settings/organization" class="settings-form" novalidate>
                {csrf_input(token)}
                {name.render(value=values.get("name", ""), autocomplete="organization")}
                {primary.render(value=values.get("primary_color", ""), input_type="color")}
                {secondary.render(value=values.get("secondary_color", ""), input_type="color")}
                <div class="form-actions">{SubmitButton("Save changes").render()}</div>
            </form>
        </div>
    </section>
    """
    return app_state.layout_response(request, "Organization settings", content, status_code=status_code)


@organizations_router.get("/settings/organization", response_class=HTMLResponse)
async def organization_settings(request: Request):
    denied = app_state.require_role(request, "admin")
    if denied is not None:
        return denied
    org = app_state.organization_context(request).organization
    if org is None:
        return app_state.not_found(request, "Your organization could not be loaded.")
    values = {
        "name": org.get("name") or "",
        "primary_color": org.get("primary_color") or DEFAULT_PRIMARY_COLOR,
        "secondary_color": org.get("secondary_color") or DEFAULT_SECONDARY_COLOR,
    }
    return _settings_page(request, org, values, {})


@organizations_router.post("/settings/organization", response_class=HTMLResponse)
async def organization_settings_submit(request: Request):
    denied = app_state.require_role(request, "admin")
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    service = app_state.organization_service(request)
    org = service.get(current.organization_id)
    if org is None:
        return app_state.not_found(request, "Your organization could not be loaded.")
    fields = {key: str(values.get(key) or "").strip() for key in ("name", "primary_color", "secondary_color")}
    errors = _color_errors(fields)
    if not fields["name"] or len(fields["name"]) > 100:
        errors["name"] = SIGNUP_ERRORS["invalid_name"]
    if errors:
        return _settings_page(request, org, fields, errors, status_code=400)
    try:
        service.update_branding(
            org["id"],
            name=fields["name"],
            primary_color=fields["primary_color"],
            secondary_color=fields["secondary_color"],
        )
    except DatastoreError as exc:
        logger.error("org.branding.failed org=%s code=%s", org["id"], exc.code)
        app_state.flash(request, "The settings could not be saved. Please try again.", "error")
        return app_state.redirect("/settings/organization")
    logger.info("org.branding.updated org=%s actor=%s", org["id"], current.id)
    app_state.flash(request, "Organization settings saved.", "success")
    return app_state.redirect("/settings/organization")


# --- Billing ------------------------------------------------------------------------


def format_price(value) -> str:
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        return "-"
    return f"${amount:,.0f}" if amount == int(amount) else f"${amount:,.2f}"


def format_limit(value) -> str:
    return "Unlimited" if value is None else str(value)


def plan_card(plan: dict, *, token: Optional[str] = None, current_plan_id: Optional[str] = None) -> str:
    """Plan summary; with a CSRF token it carries the checkout form."""
    pid = str(plan.get("id"))
    is_current = current_plan_id is not None and pid == str(current_plan_id)
    features = "".join(
        f"<li>{Component.escape(label)}: {format_limit(plan.get(key))}</li>"
        for key, label in (("max_courses", "Courses"), ("max_instructors", "Instructors"), ("max_learners", "Learners"))
    )
    action = ""
    if is_current:
        action = '<span class="badge badge--success">Current plan</span>'
    elif token is not None:
        cycles = "".join(
            f'<label class="radio"><input type="radio" name="billing_cycle" value="{c}"'
            f'{" checked" if c == "monthly" else ""}> {CYCLE_LABELS[c]}</label>'
            for c in BILLING_CYCLES
        )
        action = (
            f'<form method="post" action="/billing/subscribe/{quote(pid)}" class="plan-card__form">'
            f"{csrf_input(token)}{cycles}"
            '<button type="submit" class="btn btn--primary">Subscribe</button></form>'
        )
    return (
        f'<article class="card plan-card" id="plan-{Component.escape(pid)}">'
        f"<h3>{Component.escape(plan.get('name'))}</h3>"
        f'<p class="plan-card__price">{format_price(plan.get("price_monthly"))}<span>/month</span></p>'
        f'<p class="text-muted">or {format_price(plan.get("price_yearly"))} per year</p>'
        f"<ul>{features}</ul>{action}</article>"
    )


@organizations_router.get("/settings/billing", response_class=HTMLResponse)
async def billing_settings(request: Request):
    """Current subscription, usage against plan limits and the plan picker."""
    denied = app_state.require_role(request, "admin")
    if denied is not None:
        return denied
    current = app_state.profile(request)
    service = app_state.organization_service(request)
    ctx = app_state.organization_context(request)
    org = ctx.organization
    if org is None:
        return app_state.not_found(request, "Your organization could not be loaded.")
    token = app_state.csrf_token(request)
    try:
        subscription = service.current_subscription(org["id"])
        usage = service.usage(org["id"])
    except DatastoreError as exc:
        logger.error("billing.page.failed org=%s code=%s", current.organization_id, exc.code)
        subscription, usage = None, None

    plan = subscription[1] if subscription else None
    status = (ctx.status or "unknown").replace("_", " ")
    lines = [f"<p>Status: <strong>{Component.escape(status)}</strong></p>"]
    if ctx.status == "trial":
        ends = parse_timestamp(org.get("trial_ends_at"))
        if ctx.is_trial_expired:
            lines.append('<p class="notice notice--warning">Your trial has ended. Choose a plan below.</p>')
        elif ends is not None:
            lines.append(f"<p>Trial ends on {ends.date().isoformat()}.</p>")
    if ctx.status == "lifetime":
        lines.append("<p>Your organization has lifetime access.</p>")
    if subscription:
        sub = subscription[0]
        period_end = parse_timestamp(sub.get("current_period_end"))
        lines.append(
            f"<p>Plan: <strong>{Component.escape((plan or {}).get('name') or '-')}</strong> "
            f"({Component.escape(CYCLE_LABELS.get(sub.get('billing_cycle'), sub.get('billing_cycle') or '-'))})</p>"
        )
        if period_end is not None:
            verb = "Ends" if sub.get("cancel_at_period_end") else "Renews"
            lines.append(f"<p>{verb} on {period_end.date().isoformat()}.</p>")

    usage_html = ""
    if usage is not None:
        usage_html = "".join(
            [
                StatCard("Courses", usage.courses, hint=f"Limit: {format_limit((plan or {}).get('max_courses'))}").render(),
                StatCard(
                    "Instructors", usage.instructors, hint=f"Limit: {format_limit((plan or {}).get('max_instructors'))}"
                ).render(),
                StatCard(
                    "Learners", usage.learners, hint=f"Limit: {format_limit((plan or {}).get('max_learners'))}"
                ).render(),
            ]
        )
    show_plans = ctx.status != "lifetime"
    plans_html = ""
    if show_plans:
        plans_html = "".join(
            plan_card(p, token=token, current_plan_id=(plan or {}).get("id") if ctx.is_subscription_active else None)
            for p in service.list_plans()
        ) or '<p class="empty-state">No plans are available right now.</p>'
    content = f"""
    <section class="settings">
        <header class="page-header"><h1>Billing</h1></header>
        <div class="card" id="subscription">{"".join(lines)}</div>
        <div class="stat-grid">{usage_html}</div>
        {'<h2>Plans</h2>' if show_plans else ''}
        <div class="card-grid plans" id="plans">{plans_html}</div>
    </section>
    """
    return app_state.layout_response(request, "Billing", content)


@organizations_router.post("/billing/subscribe/{plan_id}")
async def subscribe(request: Request, plan_id: str):
    """Start a Stripe checkout for the plan and redirect to the hosted page."""
    denied = app_state.require_role(request, "admin")
    if denied is not None:
        return denied
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    service = app_state.organization_service(request)
    org = service.get(current.organization_id)
    plan = service.get_plan(plan_id)
    if org is None or plan is None or not plan.get("is_active", True):
        app_state.flash(request, "That plan is not available.", "error")
        return app_state.redirect("/settings/billing")
    base = app_state.SETTINGS.app_base_url
    try:
        url = app_state.STRIPE.create_checkout_session(
            plan=plan,
            organization=org,
            billing_cycle=str(values.get("billing_cycle") or "monthly"),
            success_url=f"{base}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/settings/billing",
            customer_email=current.email,
        )
    except BillingError as exc:
        logger.warning("billing.checkout.failed org=%s code=%s", org["id"], exc.code)
        app_state.flash(request, "Checkout could not be started. Please try again later.", "error")
        return app_state.redirect("/settings/billing")
    return app_state.redirect(url)


@organizations_router.get("/billing/success", response_class=HTMLResponse)
async def billing_success(request: Request):
    """Landing page after checkout; the webhook activates the subscription."""
    content = """
    <section class="empty-state">
        <h1>Thank you!</h1>
        <p>Your payment was received. Your subscription becomes active as soon as Stripe confirms it.</p>
        <p><a class="btn btn--primary" href="/settings/billing">View billing</a></p>
    </section>
    """
    return app_state.layout_response(request, "Payment received", content)


@organizations_router.post("/billing/webhook")
async def stripe_webhook(request: Request):
    """Verify and apply a Stripe event.

    Behavior:
        - 400 `{"error": "invalid_signature"}` for a missing or bad signature.
        - 500 when the event could not be stored, so Stripe retries it.
        - Unknown event types are acknowledged and ignored.
    """
    payload = await request.body()
    headers = {"Cache-Control": "no-store"}
    try:
        event = construct_event(
            payload, request.headers.get("stripe-signature"), app_state.SETTINGS.stripe_webhook_secret
        )
    except SignatureVerificationError as exc:
        logger.warning("billing.webhook.rejected reason=%s", exc.message)
        return JSONResponse({"error": "invalid_signature"}, status_code=400, headers=headers)
    try:
        handled = app_state.webhook_handler().handle_event(event)
    except DatastoreError as exc:
        logger.error("billing.webhook.failed type=%s code=%s", event.get("type"), exc.code)
        return JSONResponse({"error": "processing_failed"}, status_code=500, headers=headers)
    return JSONResponse({"received": True, "handled": handled}, headers=headers)
