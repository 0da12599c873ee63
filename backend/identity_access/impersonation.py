"""
Super-admin impersonation: swap the effective profile for a tracked session.

Why:
    Support staff need to see the app exactly as a customer sees it. The
    backend records every impersonation session (start/end via RPC) so the
    audit trail never depends on the browser.

Behavior:
    - States: inactive (record.impersonation is None) -> active -> inactive.
    - Transitions happen only after the backend confirms the RPC call.
    - Only a real super-admin profile may start a session; the target must
      exist and differ from the caller.
    - While active, views read `effective_profile(record)` instead of the
      real profile.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from backend.datastore.ports import DatastoreError
from backend.datastore.wiring import Backend

from .domain import ImpersonationError, ImpersonationState, Profile
from .stores import SessionRecord

logger = logging.getLogger("clearcourse.impersonation")


def effective_profile(record: Optional[SessionRecord]) -> Optional[Profile]:
    if record is None:
        return None
    if record.impersonation is not None:
        return record.impersonation.target_profile
    return record.profile


def real_profile(record: Optional[SessionRecord]) -> Optional[Profile]:
    if record is None:
        return None
    if record.impersonation is not None:
        return record.impersonation.original_profile
    return record.profile


def elapsed_label(started_at: datetime, now: Optional[datetime] = None) -> str:
    """Format the time since `started_at` as "{h}h {m}m {s}s"."""
    now = now or datetime.now(timezone.utc)
    total = max(0, int((now - started_at).total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h {minutes}m {seconds}s"


class ImpersonationService:
    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def start(
        self,
        record: SessionRecord,
        target_user_id: str,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ImpersonationState:
        """Start impersonating `target_user_id`.

        Permissions:
            Caller's real profile must carry `is_super_admin`.
        Raises:
            ImpersonationError with code forbidden, already_active,
            self_target, target_not_found or backend_error.
        """
        if record.impersonation is not None:
            raise ImpersonationError("already_active", "An impersonation session is already active.")
        caller = record.profile
        if caller is None or not caller.is_super_admin:
            raise ImpersonationError("forbidden", "Only super admins can impersonate users.")
        target_user_id = (target_user_id or "").strip()
        if target_user_id == caller.id:
            raise ImpersonationError("self_target", "You cannot impersonate yourself.")

        ds = self._backend.datastore_for(record.access_token)
        try:
            row = ds.select_one("profiles", {"id": target_user_id}) if target_user_id else None
        except DatastoreError as exc:
            raise ImpersonationError("backend_error", exc.message) from exc
        if not row:
            raise ImpersonationError("target_not_found", "Target user not found.")
        try:
            target = Profile.from_row(row)
        except ValueError as exc:
            raise ImpersonationError("target_not_found", "Target user has no usable profile.") from exc

        reason = (reason or "").strip() or None
        try:
            session_id = ds.rpc("start_impersonation", {"target_user_id": target.id, "reason": reason})
        except DatastoreError as exc:
            logger.warning("impersonation.start.failed admin=%s target=%s code=%s", caller.id, target.id, exc.code)
            raise ImpersonationError("backend_error", exc.message) from exc
        if not session_id:
            raise ImpersonationError("backend_error", "The backend did not confirm the session.")

        state = ImpersonationState(
            session_id=str(session_id),
            target_profile=target,
            original_profile=caller,
            started_at=now or datetime.now(timezone.utc),
            reason=reason,
        )
        record.impersonation = state
        logger.info("impersonation.started admin=%s target=%s session=%s", caller.id, target.id, state.session_id)
        return state

    def end(self, record: SessionRecord) -> None:
        state = record.impersonation
        if state is None:
            raise ImpersonationError("not_active", "No impersonation session is active.")
        ds = self._backend.datastore_for(record.access_token)
        try:
            ds.rpc("end_impersonation", {"session_id": state.session_id})
        except DatastoreError as exc:
            logger.warning("impersonation.end.failed session=%s code=%s", state.session_id, exc.code)
            raise ImpersonationError("backend_error", exc.message) from exc
        record.impersonation = None
        logger.info("impersonation.ended admin=%s session=%s", state.original_profile.id, state.session_id)


__all__ = ["ImpersonationService", "effective_profile", "elapsed_label", "real_profile"]
