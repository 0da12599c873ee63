"""
Public pages: landing, pricing, features, about, contact, FAQ and legal texts,
plus the theme preference toggle.

These pages are placeholders with minimal copy; pricing and the contact form
are backed by real data.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.datastore.ports import DatastoreError
from backend.lms.legal import CURRENT_TERMS_VERSION
from backend.lms.validation import EMAIL_RE
from backend.web import app_state
from backend.web.auth_utils import normalize_theme, set_theme_cookie
from backend.web.routes.organizations import plan_card
from backend.web.routes.support import TICKET_ERRORS, read_ticket_values, ticket_form
from backend.web.routing import dashboard_path_for

pages_router = APIRouter(tags=["Pages"])
logger = logging.getLogger("clearcourse.web.pages")

FEATURES = [
    ("Course builder", "Organize lessons into modules, reorder them and attach videos or documents."),
    ("Progress tracking", "Learners see where they left off; instructors see completion per lesson."),
    ("Team management", "Invite instructors and learners and manage roles in one place."),
    ("Your brand", "Use your organization's colors across the learning experience."),
]
FAQ = [
    ("Is there a free trial?", "Yes. Every organization starts with a 14-day trial, no credit card required."),
    ("Can I change plans later?", "Yes. Admins can switch plans at any time from the billing settings."),
    ("Which video platforms are supported?", "YouTube, Vimeo and direct video file uploads."),
    ("Can I export my data?", "Yes. Every user can download their data from the profile page."),
]


def _page(request: Request, title: str, body: str) -> HTMLResponse:
    content = f'<section class="page"><header class="page-header"><h1>{title}</h1></header>{body}</section>'
    return app_state.layout_response(request, title, content)


@pages_router.get("/", response_class=HTMLResponse)
async def landing(request: Request):
    current = app_state.profile(request)
    cta = (
        f'<a class="btn btn--primary" href="{dashboard_path_for(current)}">Go to dashboard</a>'
        if current is not None
        else '<a class="btn btn--primary" href="/signup">Start free trial</a> '
        '<a class="btn btn--secondary" href="/login">Sign in</a>'
    )
    content = f"""
    <section class="hero">
        <h1>Courses your team will actually finish</h1>
        <p class="hero__lead">ClearCourse Studio helps organizations build, sell and track online courses.</p>
        <p class="hero__actions">{cta}</p>
    </section>
    """
    return app_state.layout_response(request, "ClearCourse Studio", content)


@pages_router.get("/pricing", response_class=HTMLResponse)
async def pricing(request: Request):
    plans = app_state.organization_service(request).list_plans()
    cards = "".join(plan_card(p) for p in plans) or '<p class="empty-state">Plans will be announced soon.</p>'
    body = f"""
    <p>Every plan starts with a 14-day free trial.</p>
    <div class="card-grid plans" id="plans">{cards}</div>
    <p><a class="btn btn--primary" href="/signup">Start free trial</a></p>
    """
    return _page(request, "Pricing", body)


@pages_router.get("/features", response_class=HTMLResponse)
async def features(request: Request):
    items = "".join(f'<article class="card"><h3>{name}</h3><p>{text}</p></article>' for name, text in FEATURES)
    return _page(request, "Features", f'<div class="card-grid">{items}</div>')


@pages_router.get("/about", response_class=HTMLResponse)
async def about(request: Request):
    body = "<p>ClearCourse Studio is a learning platform for teams that teach.</p>"
    return _page(request, "About", body)


@pages_router.get("/faq", response_class=HTMLResponse)
async def faq(request: Request):
    items = "".join(f"<dt>{q}</dt><dd>{a}</dd>" for q, a in FAQ)
    return _page(request, "Frequently asked questions", f'<dl class="faq">{items}</dl>')


@pages_router.get("/terms", response_class=HTMLResponse)
async def terms(request: Request):
    body = f"<p>Version {CURRENT_TERMS_VERSION}.</p><p>These terms govern your use of ClearCourse Studio.</p>"
    return _page(request, "Terms of service", body)


@pages_router.get("/privacy", response_class=HTMLResponse)
async def privacy(request: Request):
    body = (
        f"<p>Version {CURRENT_TERMS_VERSION}.</p>"
        "<p>We store only what is needed to run your courses. You can export your data at any time.</p>"
    )
    return _page(request, "Privacy policy", body)


def _contact_page(request: Request, values: dict, error: str = "", *, status_code: int = 200) -> HTMLResponse:
    current = app_state.profile(request)
    show_contact = current is None
    form = ticket_form(app_state.csrf_token(request), "/contact", values, error, contact_fields=show_contact)
    support_email = app_state.SETTINGS.support_email
    content = f"""
    <section class="page">
        <header class="page-header"><h1>Contact us</h1></header>
        <p>Write to <a href="mailto:{support_email}">{support_email}</a> or use the form below.</p>
        <div class="card">{form}</div>
    </section>
    """
    return app_state.layout_response(request, "Contact", content, status_code=status_code)


@pages_router.get("/contact", response_class=HTMLResponse)
async def contact(request: Request):
    return _contact_page(request, {})


@pages_router.post("/contact", response_class=HTMLResponse)
async def contact_submit(request: Request):
    """Create a support ticket from the public form.

    Anonymous visitors must leave a name and a valid e-mail address; the
    ticket is stored without a user id.
    """
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    fields = read_ticket_values(values)
    if current is None:
        fields["user_email"] = fields["user_email"].strip()
        if not fields["user_name"].strip():
            return _contact_page(request, fields, "Please enter your name.", status_code=400)
        if not EMAIL_RE.match(fields["user_email"]):
            return _contact_page(request, fields, "Please enter a valid email address.", status_code=400)
    try:
        app_state.support_service(request).create_ticket(
            user_id=current.id if current else None,
            organization_id=current.organization_id if current else None,
            subject=fields["subject"],
            message=fields["message"],
            category=fields["category"] or "general",
            priority=fields["priority"] or "normal",
            user_email=current.email if current else fields["user_email"],
            user_name=current.display_name if current else fields["user_name"],
        )
    except ValueError as exc:
        return _contact_page(request, fields, TICKET_ERRORS.get(str(exc), "Invalid request."), status_code=400)
    except DatastoreError as exc:
        logger.error("pages.contact.failed code=%s", exc.code)
        return _contact_page(request, fields, "Your message could not be sent. Please try again.", status_code=500)
    notice = '<p class="notice notice--success" role="status">Thanks! We received your message.</p>'
    content = f'<section class="page"><header class="page-header"><h1>Contact us</h1></header>{notice}</section>'
    return app_state.layout_response(request, "Contact", content)


@pages_router.post("/preferences/theme")
async def theme_preference(request: Request):
    """Store the light/dark preference in a cookie and go back."""
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    referer = urlparse(request.headers.get("referer") or "")
    target = referer.path if referer.path.startswith("/") and not referer.path.startswith("//") else "/"
    if referer.query:
        target = f"{target}?{referer.query}"
    response = app_state.redirect(target)
    set_theme_cookie(
        response, normalize_theme(str(values.get("theme") or "")), environment=app_state.SETTINGS.environment
    )
    return response
