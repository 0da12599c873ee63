"""
In-memory backend (datastore, auth, storage) for tests and offline work.

Why:
    Tests and local demos must run without a hosted project. This backend
    mirrors the observable behavior the app relies on: table reads/writes,
    unique constraints, the signup trigger that creates a profile row, and
    the RPC functions (impersonation, role updates, legal terms, promo codes).

Notes:
    - Rows are stored as plain dicts and copied on the way in and out so
      callers can never mutate state behind the backend's back.
    - `profile_visibility_delay` hides freshly created profiles for N reads
      to reproduce replication lag after signup.
"""
from __future__ import annotations

import copy
import hashlib
import secrets
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from .ports import (
    AuthGatewayError,
    AuthGatewayProtocol,
    AuthUser,
    DatastoreError,
    DatastoreProtocol,
    FileStorageProtocol,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


UNIQUE_KEYS: Dict[str, tuple[str, ...]] = {
    "profiles": ("id",),
    "organizations": ("slug",),
    "enrollments": ("user_id", "course_id"),
    "lesson_progress": ("user_id", "lesson_id"),
    "promo_codes": ("code",),
}

TABLE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "profiles": {
        "full_name": None,
        "role": "learner",
        "is_super_admin": False,
        "organization_id": None,
        "avatar_url": None,
    },
    "courses": {"description": None, "thumbnail_url": None, "is_published": False, "instructor_id": None},
    "modules": {"description": None, "order_index": 0},
    "lessons": {
        "content": None,
        "content_type": "text",
        "content_url": None,
        "duration_minutes": 0,
        "order_index": 0,
        "file_size": None,
        "file_type": None,
        "original_filename": None,
    },
    "enrollments": {"completed_at": None, "progress_percentage": 0},
    "lesson_progress": {"is_completed": False, "completed_at": None, "time_spent_minutes": 0},
    "support_tickets": {"status": "open", "priority": "normal", "category": "general"},
    "subscription_plans": {"is_active": True, "features": {}},
    "subscriptions": {"cancel_at_period_end": False, "canceled_at": None},
    "promo_codes": {"redemptions_count": 0, "max_redemptions": None, "valid_until": None, "is_active": True},
}

# ON DELETE CASCADE foreign keys: parent table -> (child table, fk column)
CASCADES: Dict[str, tuple[tuple[str, str], ...]] = {
    "courses": (("modules", "course_id"), ("enrollments", "course_id")),
    "modules": (("lessons", "module_id"),),
    "lessons": (("lesson_progress", "lesson_id"),),
    "support_tickets": (("ticket_responses", "ticket_id"),),
}

# Tables whose rows carry an `enrolled_at`/`started_at` style timestamp
_TIMESTAMP_FIELDS: Dict[str, tuple[str, ...]] = {
    "enrollments": ("enrolled_at",),
    "promo_code_redemptions": ("redeemed_at",),
    "legal_acceptance_log": ("accepted_at",),
    "promo_codes": ("valid_from",),
}


def _matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        if row.get(column) != value:
            return False
    return True


def _sort_key(column: str):
    def key(row: Mapping[str, Any]):
        value = row.get(column)
        # None sorts last, like Postgres' default NULLS LAST for ASC
        return (value is None, value if value is not None else 0)

    return key


class InMemoryBackend:
    """Shared state behind the in-memory datastore, auth and storage."""

    def __init__(self, *, require_email_confirmation: bool = False, profile_visibility_delay: int = 0) -> None:
        self.require_email_confirmation = require_email_confirmation
        self.profile_visibility_delay = profile_visibility_delay
        self._lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.tables: Dict[str, List[dict]] = defaultdict(list)
            self.users: Dict[str, dict] = {}
            self.tokens: Dict[str, str] = {}
            self.files: Dict[tuple[str, str], bytes] = {}
            self.pending_profile_reads: Dict[str, int] = {}
            self.password_reset_requests: List[dict] = []

    # --- Factories ---------------------------------------------------------------

    def datastore(self, access_token: Optional[str] = None) -> "InMemoryDatastore":
        caller = self.tokens.get(access_token) if access_token else None
        return InMemoryDatastore(self, caller)

    def service_datastore(self) -> "InMemoryDatastore":
        return InMemoryDatastore(self, None, service_role=True)

    def auth(self) -> "InMemoryAuthGateway":
        return InMemoryAuthGateway(self)

    def file_storage(self) -> "InMemoryFileStorage":
        return InMemoryFileStorage(self)

    # --- Seeding helpers ---------------------------------------------------------

    def create_user(
        self,
        *,
        email: str,
        password: str = "Password123!",
        full_name: Optional[str] = None,
        role: str = "learner",
        is_super_admin: bool = False,
        organization_id: Optional[str] = None,
        confirmed: bool = True,
    ) -> str:
        """Create an auth user plus its profile row and return the user id."""
        with self._lock:
            user_id = str(uuid4())
            self.users[email.lower()] = {
                "id": user_id,
                "email": email,
                "password_hash": _hash_password(password),
                "confirmed": confirmed,
                "metadata": {"full_name": full_name, "role": role},
            }
            now = _now_iso()
            self.tables["profiles"].append(
                {
                    "id": user_id,
                    "email": email,
                    "full_name": full_name,
                    "role": role,
                    "is_super_admin": is_super_admin,
                    "organization_id": organization_id,
                    "avatar_url": None,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            return user_id

    def issue_token(self, user_id: str) -> str:
        token = secrets.token_urlsafe(24)
        self.tokens[token] = user_id
        return token

    def user_by_id(self, user_id: str) -> Optional[dict]:
        for rec in self.users.values():
            if rec["id"] == user_id:
                return rec
        return None


class InMemoryDatastore(DatastoreProtocol):
    """Datastore view bound to one caller (the `auth.uid()` of RPC calls)."""

    def __init__(self, backend: InMemoryBackend, caller_id: Optional[str], *, service_role: bool = False) -> None:
        self._backend = backend
        self.caller_id = caller_id
        self._service_role = service_role

    # --- Table access ------------------------------------------------------------

    def _visible(self, table: str, rows: List[dict]) -> List[dict]:
        if table != "profiles" or not self._backend.pending_profile_reads:
            return rows
        visible = []
        for row in rows:
            pending = self._backend.pending_profile_reads.get(row["id"], 0)
            if pending > 0:
                self._backend.pending_profile_reads[row["id"]] = pending - 1
                continue
            visible.append(row)
        return visible

    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        in_filter: Optional[tuple[str, Sequence[Any]]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        with self._backend._lock:
            rows = [r for r in self._backend.tables[table] if _matches(r, filters)]
            if in_filter is not None:
                column, values = in_filter
                allowed = set(values)
                rows = [r for r in rows if r.get(column) in allowed]
            rows = self._visible(table, rows)
            if order_by:
                rows = sorted(rows, key=_sort_key(order_by), reverse=descending)
            if limit is not None:
                rows = rows[: max(0, int(limit))]
            return copy.deepcopy(rows)

    def select_one(self, table: str, filters: Mapping[str, Any]) -> Optional[dict]:
        rows = self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        with self._backend._lock:
            return sum(1 for r in self._backend.tables[table] if _matches(r, filters))

    def _check_unique(self, table: str, row: Mapping[str, Any], *, ignore: Optional[dict] = None) -> None:
        keys = UNIQUE_KEYS.get(table)
        if not keys:
            return
        for existing in self._backend.tables[table]:
            if existing is ignore:
                continue
            if all(existing.get(k) == row.get(k) for k in keys):
                raise DatastoreError(
                    f'duplicate key value violates unique constraint "{table}_{"_".join(keys)}_key"',
                    code="23505",
                )

    def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        with self._backend._lock:
            now = _now_iso()
            record: Dict[str, Any] = dict(TABLE_DEFAULTS.get(table, {}))
            record.update({"id": str(uuid4()), "created_at": now, "updated_at": now})
            for field in _TIMESTAMP_FIELDS.get(table, ()):
                record[field] = now
            record.update(copy.deepcopy(dict(row)))
            self._check_unique(table, record)
            self._backend.tables[table].append(record)
            return copy.deepcopy(record)

    def update(self, table: str, filters: Mapping[str, Any], values: Mapping[str, Any]) -> list[dict]:
        if not filters:
            raise ValueError("update_requires_filters")
        with self._backend._lock:
            changed = []
            for row in self._backend.tables[table]:
                if not _matches(row, filters):
                    continue
                candidate = dict(row)
                candidate.update(copy.deepcopy(dict(values)))
                if "updated_at" in row:
                    candidate["updated_at"] = _now_iso()
                self._check_unique(table, candidate, ignore=row)
                row.clear()
                row.update(candidate)
                changed.append(copy.deepcopy(row))
            return changed

    def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise ValueError("delete_requires_filters")
        with self._backend._lock:
            rows = self._backend.tables[table]
            keep = [r for r in rows if not _matches(r, filters)]
            gone = [r for r in rows if _matches(r, filters)]
            self._backend.tables[table] = keep
            for child_table, column in CASCADES.get(table, ()):
                for row in gone:
                    if self._backend.tables[child_table]:
                        self.delete(child_table, {column: row["id"]})
            return len(gone)

    # --- RPC ---------------------------------------------------------------------

    def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        handler = getattr(self, f"_rpc_{function}", None)
        if handler is None:
            raise DatastoreError(f"Could not find the function public.{function}", code="PGRST202")
        with self._backend._lock:
            return handler(dict(params or {}))

    def _caller_profile(self) -> dict:
        if not self.caller_id:
            raise DatastoreError("not authenticated", code="42501")
        for row in self._backend.tables["profiles"]:
            if row["id"] == self.caller_id:
                return row
        raise DatastoreError("caller profile missing", code="42501")

    def _profile(self, user_id: str) -> Optional[dict]:
        for row in self._backend.tables["profiles"]:
            if row["id"] == user_id:
                return row
        return None

    def _rpc_start_impersonation(self, params: dict) -> str:
        caller = self._caller_profile()
        if not caller.get("is_super_admin"):
            raise DatastoreError("Only super admins can impersonate users", code="42501")
        target_id = str(params.get("target_user_id") or "")
        if not self._profile(target_id):
            raise DatastoreError("Target user not found", code="P0002")
        if target_id == caller["id"]:
            raise DatastoreError("Cannot impersonate yourself", code="22023")
        for row in self._backend.tables["impersonation_sessions"]:
            if row["super_admin_id"] == caller["id"] and row.get("ended_at") is None:
                raise DatastoreError("An impersonation session is already active", code="23P01")
        now = _now_iso()
        session = {
            "id": str(uuid4()),
            "super_admin_id": caller["id"],
            "target_user_id": target_id,
            "reason": params.get("reason"),
            "started_at": now,
            "ended_at": None,
            "created_at": now,
        }
        self._backend.tables["impersonation_sessions"].append(session)
        return session["id"]

    def _rpc_end_impersonation(self, params: dict) -> bool:
        caller = self._caller_profile()
        session_id = str(params.get("session_id") or "")
        for row in self._backend.tables["impersonation_sessions"]:
            if row["id"] == session_id and row["super_admin_id"] == caller["id"]:
                if row.get("ended_at") is not None:
                    raise DatastoreError("Impersonation session already ended", code="22023")
                row["ended_at"] = _now_iso()
                return True
        raise DatastoreError("Impersonation session not found", code="P0002")

    def _rpc_update_organization_user_role(self, params: dict) -> dict:
        caller = self._caller_profile()
        target = self._profile(str(params.get("target_user_id") or ""))
        new_role = params.get("new_role")
        if caller.get("role") != "admin" and not caller.get("is_super_admin"):
            return {"success": False, "error": "Only admins can change roles"}
        if target is None:
            return {"success": False, "error": "User not found"}
        if not caller.get("is_super_admin") and target.get("organization_id") != caller.get("organization_id"):
            return {"success": False, "error": "User belongs to another organization"}
        if new_role not in ("learner", "instructor", "admin"):
            return {"success": False, "error": "Invalid role"}
        target["role"] = new_role
        target["updated_at"] = _now_iso()
        return {"success": True}

    def _rpc_accept_legal_terms(self, params: dict) -> None:
        caller = self._caller_profile()
        now = _now_iso()
        version = params.get("p_version")
        if params.get("p_terms_accepted"):
            caller["terms_accepted_at"] = now
            caller["terms_version"] = version
            self._log_acceptance(caller["id"], "terms", version, now)
        if params.get("p_privacy_accepted"):
            caller["privacy_accepted_at"] = now
            self._log_acceptance(caller["id"], "privacy", version, now)
        caller["marketing_emails_consent"] = bool(params.get("p_marketing_consent"))
        if caller["marketing_emails_consent"]:
            self._log_acceptance(caller["id"], "marketing", version, now)
        return None

    def _log_acceptance(self, user_id: str, document_type: str, version: Any, now: str) -> None:
        self._backend.tables["legal_acceptance_log"].append(
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "document_type": document_type,
                "document_version": version,
                "accepted_at": now,
            }
        )

    def _rpc_increment_promo_redemptions(self, params: dict) -> None:
        promo_id = params.get("promo_id")
        for row in self._backend.tables["promo_codes"]:
            if row["id"] == promo_id:
                row["redemptions_count"] = int(row.get("redemptions_count") or 0) + 1
        return None

    # --- Edge functions ----------------------------------------------------------

    def invoke_function(self, name: str, body: Mapping[str, Any]) -> dict:
        if name != "delete-user":
            raise DatastoreError(f"function {name} not found", code="404")
        with self._backend._lock:
            caller = self._caller_profile()
            if caller.get("role") != "admin" and not caller.get("is_super_admin"):
                raise DatastoreError("Only admins can delete users", code="403")
            user_id = str(body.get("userId") or "")
            if user_id == caller["id"]:
                return {"success": False, "error": "Cannot delete your own account"}
            target = self._profile(user_id)
            if target is None:
                return {"success": False, "error": "User not found"}
            self._backend.tables["profiles"] = [r for r in self._backend.tables["profiles"] if r["id"] != user_id]
            for email, rec in list(self._backend.users.items()):
                if rec["id"] == user_id:
                    del self._backend.users[email]
            return {"success": True}


class InMemoryAuthGateway(AuthGatewayProtocol):
    def __init__(self, backend: InMemoryBackend) -> None:
        self._backend = backend

    def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        rec = self._backend.users.get((email or "").strip().lower())
        if rec is None or rec["password_hash"] != _hash_password(password or ""):
            raise AuthGatewayError("Invalid login credentials", status=400)
        if self._backend.require_email_confirmation and not rec["confirmed"]:
            raise AuthGatewayError("Email not confirmed", status=400)
        access = self._backend.issue_token(rec["id"])
        return AuthUser(
            id=rec["id"],
            email=rec["email"],
            email_confirmed=bool(rec["confirmed"]),
            access_token=access,
            refresh_token=secrets.token_urlsafe(16),
        )

    def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> Optional[AuthUser]:
        key = (email or "").strip().lower()
        if not key or "@" not in key:
            raise AuthGatewayError("Unable to validate email address: invalid format", status=400)
        if key in self._backend.users:
            raise AuthGatewayError("User already registered", status=422)
        confirmed = not self._backend.require_email_confirmation
        user_id = self._backend.create_user(
            email=email.strip(),
            password=password,
            full_name=metadata.get("full_name"),
            role=str(metadata.get("role") or "learner"),
            confirmed=confirmed,
        )
        if self._backend.profile_visibility_delay:
            self._backend.pending_profile_reads[user_id] = self._backend.profile_visibility_delay
        if not confirmed:
            return AuthUser(id=user_id, email=email.strip(), email_confirmed=False)
        return AuthUser(
            id=user_id,
            email=email.strip(),
            email_confirmed=True,
            access_token=self._backend.issue_token(user_id),
            refresh_token=secrets.token_urlsafe(16),
        )

    def sign_out(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> None:
        if access_token:
            self._backend.tokens.pop(access_token, None)

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        # Unknown addresses succeed silently so the endpoint cannot enumerate users
        self._backend.password_reset_requests.append({"email": email, "redirect_to": redirect_to})

    def update_password(self, access_token: str, refresh_token: Optional[str], password: str) -> None:
        user_id = self._backend.tokens.get(access_token)
        rec = self._backend.user_by_id(user_id) if user_id else None
        if rec is None:
            raise AuthGatewayError("Auth session missing!", status=401)
        rec["password_hash"] = _hash_password(password)


class InMemoryFileStorage(FileStorageProtocol):
    PUBLIC_BASE = "http://localhost:54321/storage/v1/object/public"

    def __init__(self, backend: InMemoryBackend) -> None:
        self._backend = backend

    def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> str:
        key = (bucket, path.lstrip("/"))
        if key in self._backend.files:
            raise DatastoreError("The resource already exists", code="409")
        self._backend.files[key] = bytes(content)
        return f"{self.PUBLIC_BASE}/{bucket}/{key[1]}"

    def remove(self, *, bucket: str, paths: Iterable[str]) -> None:
        for path in paths:
            self._backend.files.pop((bucket, path.lstrip("/")), None)


__all__ = [
    "InMemoryAuthGateway",
    "InMemoryBackend",
    "InMemoryDatastore",
    "InMemoryFileStorage",
]
