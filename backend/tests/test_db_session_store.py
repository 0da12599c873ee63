"""
Unit-style tests for DBSessionStore using a fake psycopg driver.

No Postgres is needed: the fake connection keeps rows in a dict and answers
the four statements the store issues (insert, select, update, delete).
"""
from __future__ import annotations

import time

import pytest

from backend.identity_access.domain import Profile


class _FakeCursor:
    def __init__(self, rows: dict):
        self._rows = rows
        self._row = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, stmt, params):
        text = repr(stmt).lower()
        if "insert into" in text:
            user_id, email, data, expires_at = params
            sid = f"sid-{len(self._rows) + 1}"
            self._rows[sid] = {"user_id": user_id, "email": email, "data": data.obj, "expires_at": expires_at}
            self._row = (sid,)
        elif "delete from" in text:
            self._rows.pop(params[0], None)
            self._row = None
        elif "update " in text:
            data, sid = params
            self._rows[sid]["data"] = data.obj
            self._row = None
        elif "select" in text:
            rec = self._rows.get(params[0])
            if rec and rec["expires_at"] > int(time.time()):
                self._row = (params[0], rec["user_id"], rec["email"], rec["data"], rec["expires_at"])
            else:
                self._row = None
        else:
            raise AssertionError(f"Unexpected SQL: {text}")

    def fetchone(self):
        return self._row


class _FakeConn:
    def __init__(self, rows: dict):
        self._rows = rows

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self):
        return _FakeCursor(self._rows)


@pytest.fixture
def rows(monkeypatch: pytest.MonkeyPatch) -> dict:
    store: dict = {}
    import backend.identity_access.stores_db as stores_db

    monkeypatch.setattr(stores_db.psycopg, "connect", lambda dsn, **kwargs: _FakeConn(store))
    return store


def test_create_get_save_delete_round_trip(rows):
    from backend.identity_access.stores_db import DBSessionStore

    store = DBSessionStore(dsn="postgresql://service@db.example/postgres")
    profile = Profile(id="u1", email="u@example.com", role="instructor", organization_id="org-1")
    rec = store.create(user_id="u1", email="u@example.com", access_token="at", refresh_token="rt", profile=profile)
    assert rec.session_id == "sid-1"
    assert rows["sid-1"]["data"]["access_token"] == "at"

    loaded = store.get("sid-1")
    assert loaded.profile == profile
    assert loaded.refresh_token == "rt"
    assert loaded.impersonation is None

    loaded.push_flash("Saved", "success")
    store.save(loaded)
    assert store.get("sid-1").flash == [{"kind": "success", "message": "Saved"}]

    store.delete("sid-1")
    assert store.get("sid-1") is None


def test_expired_sessions_are_not_returned(rows):
    from backend.identity_access.stores_db import DBSessionStore

    store = DBSessionStore(dsn="postgresql://service@db.example/postgres")
    store.create(user_id="u1", email="u@example.com", ttl_seconds=-10)
    assert store.get("sid-1") is None


def test_constructor_validates_dsn_and_table(monkeypatch: pytest.MonkeyPatch):
    from backend.identity_access.stores_db import DBSessionStore

    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)
    with pytest.raises(RuntimeError):
        DBSessionStore()
    with pytest.raises(ValueError):
        DBSessionStore(dsn="postgresql://x", table="public.sessions; drop table x")


def test_db_backend_is_selected_from_settings(monkeypatch: pytest.MonkeyPatch):
    from backend.identity_access.stores import SessionStore
    from backend.identity_access.stores_db import DBSessionStore
    from backend.web import app_state
    from backend.web.config import load_settings

    monkeypatch.setenv("DATABASE_URL", "postgresql://app:pw@db:5432/app?sslmode=require")
    settings = load_settings({"SESSIONS_BACKEND": "db"})

    assert isinstance(app_state._build_session_store(settings, under_pytest=False), DBSessionStore)
    # Tests keep the in-memory store even when the environment asks for Postgres.
    assert isinstance(app_state._build_session_store(settings), SessionStore)
    assert isinstance(app_state._build_session_store(load_settings({}), under_pytest=False), SessionStore)
