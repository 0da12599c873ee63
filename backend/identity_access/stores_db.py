"""
Database-backed SessionStore for production use (Postgres/Supabase).

Why: In-memory sessions are not durable and do not scale across instances. This
store persists sessions in Postgres while keeping the cookie opaque.

Security:
- Intended to be used with a service role connection string; anon clients must
  not access the `app_sessions` table. RLS is enabled; service role bypasses RLS.
- Only the opaque `session_id` is set in the cookie; tokens and profile data
  stay server-side in the `data` jsonb column.

Note: This module uses psycopg3. It is imported only when enabled via
`SESSIONS_BACKEND=db`. Tests use the in-memory store.
"""
from __future__ import annotations

from typing import Any, Optional
import os
import re
import time

import psycopg
from psycopg import sql
from psycopg.types.json import Json

from .domain import ImpersonationState, Profile
from .stores import SessionRecord


def _now() -> int:
    return int(time.time())


def _encode(rec: SessionRecord) -> dict:
    return {
        "access_token": rec.access_token,
        "refresh_token": rec.refresh_token,
        "profile": rec.profile.to_dict() if rec.profile else None,
        "impersonation": rec.impersonation.to_dict() if rec.impersonation else None,
        "flash": list(rec.flash),
    }


def _decode(session_id: str, user_id: str, email: str, data: Any, expires_at: Optional[int]) -> SessionRecord:
    payload = data if isinstance(data, dict) else {}
    profile = payload.get("profile")
    imp = payload.get("impersonation")
    return SessionRecord(
        session_id=session_id,
        user_id=user_id,
        email=email,
        access_token=payload.get("access_token"),
        refresh_token=payload.get("refresh_token"),
        profile=Profile(**profile) if profile else None,
        impersonation=ImpersonationState.from_dict(imp) if imp else None,
        flash=list(payload.get("flash") or []),
        expires_at=expires_at,
    )


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Use a service role in Supabase.
    table:
        Fully qualified table name. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: str | None = None, table: str = "public.app_sessions") -> None:
        self._dsn = dsn or os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        # Validate table identifier early
        if not re.match(r'^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$', table or ''):
            raise ValueError("Invalid table name")
        self._table = table

    def _ident(self) -> sql.Composed:
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        return sql.SQL("{}.{}").format(sql.Identifier(schema), sql.Identifier(name))

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
        expires_at = _now() + ttl_seconds
        rec = SessionRecord(
            session_id="",
            user_id=user_id,
            email=email,
            access_token=access_token,
            refresh_token=refresh_token,
            profile=profile,
            expires_at=expires_at,
        )
        stmt = sql.SQL(
            "insert into {} (session_id, user_id, email, data, expires_at) "
            "values (gen_random_uuid()::text, %s, %s, %s, to_timestamp(%s)) returning session_id"
        ).format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (user_id, email, Json(_encode(rec)), expires_at))
                row = cur.fetchone()
        rec.session_id = str(row[0]) if row else ""
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        stmt = sql.SQL(
            "select session_id, user_id, email, data, extract(epoch from expires_at)::bigint "
            "from {} where session_id = %s and expires_at > now()"
        ).format(self._ident())
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
                row = cur.fetchone()
        if not row:
            return None
        return _decode(
            str(row[0]), str(row[1]), str(row[2] or ""), row[3], int(row[4]) if row[4] is not None else None
        )

    def save(self, record: SessionRecord) -> None:
        stmt = sql.SQL("update {} set data = %s where session_id = %s").format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (Json(_encode(record)), record.session_id))

    def delete(self, session_id: str) -> None:
        stmt = sql.SQL("delete from {} where session_id = %s").format(self._ident())
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(stmt, (session_id,))
