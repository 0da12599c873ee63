"""
Support tickets and their conversation threads.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.datastore.ports import DatastoreProtocol

logger = logging.getLogger("clearcourse.support")

PRIORITIES = ("low", "normal", "high", "urgent")
CATEGORIES = ("general", "technical", "billing", "account", "feature")
STATUSES = ("open", "in_progress", "resolved", "closed")


@dataclass
class TicketThread:
    ticket: dict
    responses: list[dict]


@dataclass
class SupportService:
    ds: DatastoreProtocol

    def list_tickets(self, user_id: str) -> list[dict]:
        return self.ds.select("support_tickets", filters={"user_id": user_id}, order_by="created_at",
                              descending=True)

    def create_ticket(
        self,
        *,
        user_id: Optional[str],
        organization_id: Optional[str],
        subject: str,
        message: str,
        category: str = "general",
        priority: str = "normal",
        user_email: str = "",
        user_name: str = "",
    ) -> dict:
        subject = (subject or "").strip()
        message = (message or "").strip()
        if not subject or len(subject) > 200:
            raise ValueError("invalid_subject")
        if not message:
            raise ValueError("invalid_message")
        if priority not in PRIORITIES:
            raise ValueError("invalid_priority")
        if category not in CATEGORIES:
            raise ValueError("invalid_category")
        ticket = self.ds.insert(
            "support_tickets",
            {
                "organization_id": organization_id,
                "user_id": user_id,
                "subject": subject,
                "message": message,
                "category": category,
                "priority": priority,
                "user_email": (user_email or "").strip(),
                "user_name": (user_name or "").strip(),
                "status": "open",
            },
        )
        logger.info("support.ticket.created id=%s priority=%s", ticket.get("id"), priority)
        return ticket

    def thread(self, user_id: str, ticket_id: str) -> TicketThread:
        """Ticket with responses oldest first; only the ticket's author may read it."""
        ticket = self.ds.select_one("support_tickets", {"id": ticket_id})
        if not ticket or ticket.get("user_id") != user_id:
            raise LookupError("ticket_not_found")
        responses = self.ds.select("ticket_responses", filters={"ticket_id": ticket_id}, order_by="created_at")
        return TicketThread(ticket=ticket, responses=responses)

    def add_response(self, user_id: str, ticket_id: str, message: str) -> dict:
        message = (message or "").strip()
        if not message:
            raise ValueError("invalid_message")
        self.thread(user_id, ticket_id)
        return self.ds.insert("ticket_responses", {"ticket_id": ticket_id, "user_id": user_id, "message": message})


__all__ = ["CATEGORIES", "PRIORITIES", "STATUSES", "SupportService", "TicketThread"]
