"""
In-memory session store for development and tests.

Why: Keep server-side state (tokens, profile, impersonation, flash messages)
opaque to the client. For production, use the Postgres-backed store.

Security: Cookies carry only an opaque session id. Session data stays server-side.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import secrets
import time

from .domain import ImpersonationState, Profile


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    user_id: str
    email: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    profile: Optional[Profile] = None
    impersonation: Optional[ImpersonationState] = None
    flash: List[dict] = field(default_factory=list)
    expires_at: Optional[int] = None

    def push_flash(self, message: str, kind: str = "info") -> None:
        self.flash.append({"kind": kind, "message": message})

    def pop_flash(self) -> List[dict]:
        messages, self.flash = list(self.flash), []
        return messages


class SessionStore:
    def __init__(self):
        self._data: Dict[str, SessionRecord] = {}

    def create(
        self,
        *,
        user_id: str,
        email: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        profile: Optional[Profile] = None,
        ttl_seconds: int = 3600,
    ) -> SessionRecord:
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(
            session_id=sid,
            user_id=user_id,
            email=email,
            access_token=access_token,
            refresh_token=refresh_token,
            profile=profile,
            expires_at=_now() + ttl_seconds,
        )
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            self._data.pop(session_id, None)
            return None
        return rec

    def save(self, record: SessionRecord) -> None:
        self._data[record.session_id] = record

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)


class TokenMap:
    """Process-local key -> token map with a size cap and per-entry expiry.

    The oldest entry is evicted once `max_entries` is reached, so clients that
    never come back cannot grow it without bound.
    """

    def __init__(self, *, max_entries: int = 10_000, ttl_seconds: int = 12 * 3600) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._data: "OrderedDict[str, Tuple[Any, int]]" = OrderedDict()

    def get(self, key: str) -> Any:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at < _now():
            self._data.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._data.pop(key, None)
        self._data[key] = (value, _now() + self.ttl_seconds)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def pop(self, key: str) -> Any:
        item = self._data.pop(key, None)
        return item[0] if item else None

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)
