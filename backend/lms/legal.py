"""
Legal terms acceptance, marketing consent and personal data export.

Why:
    Acceptance is recorded by the backend (`accept_legal_terms` RPC) so the
    audit log carries server timestamps. Export gathers everything stored
    about the user into one JSON document.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from backend.datastore.ports import DatastoreError, DatastoreProtocol

logger = logging.getLogger("clearcourse.legal")

CURRENT_TERMS_VERSION = "1.0"


@dataclass
class LegalService:
    ds: DatastoreProtocol

    def accept_terms(self, *, terms_accepted: bool, privacy_accepted: bool, marketing_consent: bool) -> None:
        """Record acceptance; both terms and privacy are mandatory."""
        if not terms_accepted or not privacy_accepted:
            raise ValueError("invalid_acceptance")
        self.ds.rpc(
            "accept_legal_terms",
            {
                "p_terms_accepted": bool(terms_accepted),
                "p_privacy_accepted": bool(privacy_accepted),
                "p_marketing_consent": bool(marketing_consent),
                "p_version": CURRENT_TERMS_VERSION,
            },
        )

    def has_accepted_terms(self, user_id: str) -> bool:
        try:
            row = self.ds.select_one("profiles", {"id": user_id})
        except DatastoreError as exc:
            logger.warning("legal.check.failed user=%s code=%s", user_id, exc.code)
            return False
        return bool(row and row.get("terms_accepted_at") and row.get("privacy_accepted_at"))

    def acceptance_log(self, user_id: str) -> list[dict]:
        try:
            return self.ds.select(
                "legal_acceptance_log", filters={"user_id": user_id}, order_by="accepted_at", descending=True
            )
        except DatastoreError as exc:
            logger.warning("legal.log.failed user=%s code=%s", user_id, exc.code)
            return []

    def marketing_consent(self, user_id: str) -> bool:
        row = self.ds.select_one("profiles", {"id": user_id})
        return bool(row and row.get("marketing_emails_consent"))

    def update_marketing_consent(self, user_id: str, consent: bool) -> None:
        self.ds.update("profiles", {"id": user_id}, {"marketing_emails_consent": bool(consent)})
        if consent:
            self.ds.insert(
                "legal_acceptance_log",
                {"user_id": user_id, "document_type": "marketing", "document_version": CURRENT_TERMS_VERSION},
            )

    def export_user_data(self, user_id: str, *, now: Optional[datetime] = None) -> dict[str, Any]:
        profile = self.ds.select_one("profiles", {"id": user_id})
        enrollments = self.ds.select("enrollments", filters={"user_id": user_id})
        course_ids = [e["course_id"] for e in enrollments if e.get("course_id")]
        courses = {c["id"]: c for c in self.ds.select("courses", in_filter=("id", course_ids))} if course_ids else {}
        for enrollment in enrollments:
            enrollment["course"] = courses.get(enrollment.get("course_id"))
        return {
            "profile": profile,
            "courses": enrollments,
            "progress": self.ds.select("lesson_progress", filters={"user_id": user_id}),
            "legal_acceptance": self.ds.select("legal_acceptance_log", filters={"user_id": user_id}),
            "exported_at": (now or datetime.now(timezone.utc)).isoformat(),
        }


__all__ = ["CURRENT_TERMS_VERSION", "LegalService"]
