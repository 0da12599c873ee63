"""
Supabase-backed datastore and auth gateway.

Why:
    The hosted backend owns every row (profiles, courses, enrollments, ...)
    and enforces row-level security. The app only forwards the signed-in
    user's access token so that every read and write runs as that user.

Notes:
    - A client is created per bound token. Clients are cheap and this keeps
      auth state from leaking between concurrent requests.
    - Errors from postgrest/gotrue are normalized into `DatastoreError` and
      `AuthGatewayError` so callers never depend on client library types.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Sequence

from supabase import Client, ClientOptions, create_client

from .ports import (
    AuthGatewayError,
    AuthGatewayProtocol,
    AuthUser,
    DatastoreError,
    DatastoreProtocol,
)

logger = logging.getLogger("clearcourse.datastore")


def _client_for(url: str, key: str, access_token: Optional[str] = None) -> Client:
    if access_token:
        options = ClientOptions(headers={"Authorization": f"Bearer {access_token}"})
        client = create_client(url, key, options=options)
        client.postgrest.auth(access_token)
        return client
    return create_client(url, key)


def _api_error(exc: Exception) -> DatastoreError:
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)
    return DatastoreError(str(message), code=str(code) if code else None)


class SupabaseDatastore(DatastoreProtocol):
    """Table/RPC access through a supabase client bound to one access token."""

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def connect(cls, url: str, key: str, access_token: Optional[str] = None) -> "SupabaseDatastore":
        return cls(_client_for(url, key, access_token))

    @property
    def client(self) -> Client:
        return self._client

    @staticmethod
    def _apply_filters(query: Any, filters: Optional[Mapping[str, Any]]) -> Any:
        for column, value in (filters or {}).items():
            query = query.is_(column, "null") if value is None else query.eq(column, value)
        return query

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
        if in_filter is not None and not list(in_filter[1]):
            return []
        try:
            query = self._apply_filters(self._client.table(table).select("*"), filters)
            if in_filter is not None:
                query = query.in_(in_filter[0], list(in_filter[1]))
            if order_by:
                query = query.order(order_by, desc=descending)
            if limit is not None:
                query = query.limit(int(limit))
            res = query.execute()
        except Exception as exc:
            raise _api_error(exc) from exc
        return list(res.data or [])

    def select_one(self, table: str, filters: Mapping[str, Any]) -> Optional[dict]:
        rows = self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        try:
            query = self._apply_filters(self._client.table(table).select("id", count="exact"), filters)
            res = query.limit(1).execute()
        except Exception as exc:
            raise _api_error(exc) from exc
        return int(res.count or 0)

    def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        try:
            res = self._client.table(table).insert(dict(row)).execute()
        except Exception as exc:
            raise _api_error(exc) from exc
        data = list(res.data or [])
        if not data:
            raise DatastoreError(f"insert into {table} returned no row", code="no_row")
        return data[0]

    def update(self, table: str, filters: Mapping[str, Any], values: Mapping[str, Any]) -> list[dict]:
        if not filters:
            raise ValueError("update_requires_filters")
        try:
            query = self._apply_filters(self._client.table(table).update(dict(values)), filters)
            res = query.execute()
        except Exception as exc:
            raise _api_error(exc) from exc
        return list(res.data or [])

    def delete(self, table: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise ValueError("delete_requires_filters")
        try:
            query = self._apply_filters(self._client.table(table).delete(), filters)
            res = query.execute()
        except Exception as exc:
            raise _api_error(exc) from exc
        return len(res.data or [])

    def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        try:
            res = self._client.rpc(function, dict(params or {})).execute()
        except Exception as exc:
            raise _api_error(exc) from exc
        return res.data

    def invoke_function(self, name: str, body: Mapping[str, Any]) -> dict:
        try:
            raw = self._client.functions.invoke(name, invoke_options={"body": dict(body)})
        except Exception as exc:
            raise _api_error(exc) from exc
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8") or "{}"
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = {"raw": raw}
        return raw if isinstance(raw, dict) else {"data": raw}


def _to_auth_user(user: Any, session: Any = None) -> AuthUser:
    confirmed = bool(getattr(user, "email_confirmed_at", None) or getattr(user, "confirmed_at", None))
    return AuthUser(
        id=str(user.id),
        email=str(getattr(user, "email", "") or ""),
        email_confirmed=confirmed,
        access_token=getattr(session, "access_token", None) if session is not None else None,
        refresh_token=getattr(session, "refresh_token", None) if session is not None else None,
    )


class SupabaseAuthGateway(AuthGatewayProtocol):
    """Stateless wrapper over supabase auth; each call uses a fresh client."""

    def __init__(self, url: str, anon_key: str) -> None:
        self._url = url
        self._anon_key = anon_key

    def _client(self) -> Client:
        return create_client(self._url, self._anon_key)

    def sign_in_with_password(self, email: str, password: str) -> AuthUser:
        try:
            res = self._client().auth.sign_in_with_password({"email": email, "password": password})
        except Exception as exc:
            raise AuthGatewayError(getattr(exc, "message", None) or str(exc), status=getattr(exc, "status", None)) from exc
        if res.user is None:
            raise AuthGatewayError("Invalid login credentials", status=400)
        return _to_auth_user(res.user, res.session)

    def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> Optional[AuthUser]:
        try:
            res = self._client().auth.sign_up(
                {"email": email, "password": password, "options": {"data": dict(metadata)}}
            )
        except Exception as exc:
            raise AuthGatewayError(getattr(exc, "message", None) or str(exc), status=getattr(exc, "status", None)) from exc
        if res.user is None:
            return None
        return _to_auth_user(res.user, res.session)

    def sign_out(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> None:
        if not access_token:
            return
        client = self._client()
        try:
            client.auth.set_session(access_token, refresh_token or "")
            client.auth.sign_out()
        except Exception as exc:
            # Session tokens expire on their own; a failed revoke is not fatal.
            logger.warning("auth.sign_out.failed %s", exc.__class__.__name__)

    def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        try:
            self._client().auth.reset_password_for_email(email, {"redirect_to": redirect_to})
        except Exception as exc:
            raise AuthGatewayError(getattr(exc, "message", None) or str(exc)) from exc

    def update_password(self, access_token: str, refresh_token: Optional[str], password: str) -> None:
        client = self._client()
        try:
            client.auth.set_session(access_token, refresh_token or "")
            client.auth.update_user({"password": password})
        except Exception as exc:
            raise AuthGatewayError(getattr(exc, "message", None) or str(exc)) from exc


__all__ = ["SupabaseAuthGateway", "SupabaseDatastore"]
