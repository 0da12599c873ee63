"""
Support routes: ticket list, ticket creation and the conversation thread.

Permissions:
    Authenticated users see only their own tickets. The public contact form
    lives in `pages.py` and creates tickets without a user id.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.datastore.ports import DatastoreError
from backend.lms.organizations import parse_timestamp
from backend.lms.support import CATEGORIES, PRIORITIES
from backend.web import app_state
from backend.web.components import Component, SelectField, TextAreaField, TextInputField, csrf_input
from backend.web.components.forms import SubmitButton

support_router = APIRouter(tags=["Support"])
logger = logging.getLogger("clearcourse.web.support")

TICKET_ERRORS = {
    "invalid_subject": "Please enter a subject (max. 200 characters).",
    "invalid_message": "Please describe your request.",
    "invalid_priority": "Please choose a valid priority.",
    "invalid_category": "Please choose a valid category.",
}
CATEGORY_OPTIONS = [(c, c.capitalize()) for c in CATEGORIES]
PRIORITY_OPTIONS = [(p, p.capitalize()) for p in PRIORITIES]


def _when(value) -> str:
    parsed = parse_timestamp(value)
    return parsed.strftime("%Y-%m-%d %H:%M") if parsed else ""


def ticket_form(token: str, action: str, values: dict, error: str = "", *, contact_fields: bool = False) -> str:
    """Ticket form shared by `/support` and the public contact page."""
    error_html = f'<p class="form-error" role="alert">{Component.escape(error)}</p>' if error else ""
    contact_html = ""
    if contact_fields:
        contact_html = (
            TextInputField("user_name", "Your name", required=True).render(
                value=values.get("user_name", ""), autocomplete="name"
            )
            + TextInputField("user_email", "Your email", required=True).render(
                value=values.get("user_email", ""), input_type="email", autocomplete="email"
            )
        )
    return f"""
    <form method="post" action="{action}" class="ticket-form" novalidate>
        {csrf_input(token)}
        {error_html}
        {contact_html}
        {TextInputField("subject", "Subject", required=True).render(value=values.get("subject", ""), maxlength="200")}
        {SelectField("category", "Category").render(CATEGORY_OPTIONS, value=values.get("category") or "general")}
        {SelectField("priority", "Priority").render(PRIORITY_OPTIONS, value=values.get("priority") or "normal")}
        {TextAreaField("message", "Message", required=True).render(value=values.get("message", ""), rows=6)}
        <div class="form-actions">{SubmitButton("Send").render()}</div>
    </form>
    """


def _support_page(request: Request, values: dict, error: str = "", *, status_code: int = 200) -> HTMLResponse:
    current = app_state.profile(request)
    try:
        tickets = app_state.support_service(request).list_tickets(current.id)
    except DatastoreError as exc:
        logger.error("support.list.failed user=%s code=%s", current.id, exc.code)
        tickets = []
    rows = "".join(
        "<tr>"
        f'<td><a href="/support/{quote(str(t["id"]))}">{Component.escape(t.get("subject"))}</a></td>'
        f"<td>{Component.escape(t.get('category'))}</td>"
        f"<td>{Component.escape(t.get('priority'))}</td>"
        f'<td><span class="badge">{Component.escape((t.get("status") or "open").replace("_", " "))}</span></td>'
        f"<td>{_when(t.get('created_at'))}</td>"
        "</tr>"
        for t in tickets
    ) or '<tr><td colspan="5" class="empty-state">You have no support tickets yet.</td></tr>'
    content = f"""
    <section class="support">
        <header class="page-header"><h1>Support</h1></header>
        <table class="table" id="tickets">
            <thead><tr><th>Subject</th><th>Category</th><th>Priority</th><th>Status</th><th>Created</th></tr></thead>
            <tbody>{rows}</tbody>
        </table>
        <section class="card" id="new-ticket">
            <h2>Open a ticket</h2>
            {ticket_form(app_state.csrf_token(request), "/support", values, error)}
        </section>
    </section>
    """
    return app_state.layout_response(request, "Support", content, status_code=status_code)


def read_ticket_values(values: dict) -> dict:
    return {
        key: str(values.get(key) or "")
        for key in ("subject", "message", "category", "priority", "user_name", "user_email")
    }


@support_router.get("/support", response_class=HTMLResponse)
async def support_page(request: Request):
    return _support_page(request, {})


@support_router.post("/support", response_class=HTMLResponse)
async def create_ticket(request: Request):
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    fields = read_ticket_values(values)
    try:
        ticket = app_state.support_service(request).create_ticket(
            user_id=current.id,
            organization_id=current.organization_id,
            subject=fields["subject"],
            message=fields["message"],
            category=fields["category"] or "general",
            priority=fields["priority"] or "normal",
            user_email=current.email,
            user_name=current.display_name,
        )
    except ValueError as exc:
        return _support_page(request, fields, TICKET_ERRORS.get(str(exc), "Invalid ticket."), status_code=400)
    except DatastoreError as exc:
        logger.error("support.create.failed user=%s code=%s", current.id, exc.code)
        return _support_page(request, fields, "The ticket could not be created. Please try again.", status_code=500)
    app_state.flash(request, "Your ticket was created. We will get back to you soon.", "success")
    return app_state.redirect(f"/support/{quote(str(ticket['id']))}")


@support_router.get("/support/{ticket_id}", response_class=HTMLResponse)
async def ticket_thread(request: Request, ticket_id: str):
    """Ticket details with all responses, oldest first, and a reply form."""
    current = app_state.profile(request)
    try:
        thread = app_state.support_service(request).thread(current.id, ticket_id)
    except LookupError:
        return app_state.not_found(request, "This ticket does not exist.")
    ticket = thread.ticket
    entries = [
        f'<li class="thread__entry thread__entry--{"self" if r.get("user_id") == current.id else "staff"}">'
        f'<p class="text-muted">{"You" if r.get("user_id") == current.id else "Support team"} '
        f"&middot; {_when(r.get('created_at'))}</p>"
        f'<p>{Component.escape(r.get("message"))}</p></li>'
        for r in thread.responses
    ]
    closed = ticket.get("status") == "closed"
    reply_form = (
        '<p class="text-muted">This ticket is closed.</p>'
        if closed
        else (
            f'<form method="post" action="/support/{quote(ticket_id)}/responses" class="reply-form">'
            f"{csrf_input(app_state.csrf_token(request))}"
            f'{TextAreaField("reply_message", "Reply", required=True, name="message").render(rows=4)}'
            f'<div class="form-actions">{SubmitButton("Send reply").render()}</div></form>'
        )
    )
    content = f"""
    <section class="support-thread">
        <header class="page-header">
            <h1>{Component.escape(ticket.get("subject"))}</h1>
            <p class="text-muted">Status: {Component.escape((ticket.get("status") or "open").replace("_", " "))}
            &middot; Priority: {Component.escape(ticket.get("priority"))}</p>
        </header>
        <article class="card"><p>{Component.escape(ticket.get("message"))}</p>
            <p class="text-muted">{_when(ticket.get("created_at"))}</p></article>
        <ol class="thread">{"".join(entries)}</ol>
        {reply_form}
        <p><a href="/support">Back to all tickets</a></p>
    </section>
    """
    return app_state.layout_response(request, "Support ticket", content)


@support_router.post("/support/{ticket_id}/responses")
async def add_response(request: Request, ticket_id: str):
    values, ok = await app_state.read_form(request)
    if not ok:
        return app_state.csrf_error()
    current = app_state.profile(request)
    try:
        app_state.support_service(request).add_response(current.id, ticket_id, str(values.get("message") or ""))
    except LookupError:
        return app_state.not_found(request, "This ticket does not exist.")
    except ValueError:
        app_state.flash(request, "Please enter a message.", "error")
    except DatastoreError as exc:
        logger.error("support.reply.failed ticket=%s code=%s", ticket_id, exc.code)
        app_state.flash(request, "Your reply could not be sent. Please try again.", "error")
    else:
        app_state.flash(request, "Reply sent.", "success")
    return app_state.redirect(f"/support/{quote(ticket_id)}")
