"""
Ports for the hosted backend (datastore, auth, functions).

Why:
    Every page issues plain reads/writes against named tables plus a handful
    of RPC calls. Keeping that surface behind small protocols lets the web
    layer run against Supabase in production and against the in-memory
    backend in tests without changing call sites.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence


class DatastoreError(Exception):
    """Raised when a table or RPC call fails on the backend."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "backend_error"


class AuthGatewayError(Exception):
    """Raised by the auth gateway; `message` mirrors the provider's text."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    email_confirmed: bool
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


class DatastoreProtocol(Protocol):
    def select(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        in_filter: Optional[tuple[str, Sequence[Any]]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]: ...

    def select_one(self, table: str, filters: Mapping[str, Any]) -> Optional[dict]: ...

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int: ...

    def insert(self, table: str, row: Mapping[str, Any]) -> dict: ...

    def update(self, table: str, filters: Mapping[str, Any], values: Mapping[str, Any]) -> list[dict]: ...

    def delete(self, table: str, filters: Mapping[str, Any]) -> int: ...

    def rpc(self, function: str, params: Optional[Mapping[str, Any]] = None) -> Any: ...

    def invoke_function(self, name: str, body: Mapping[str, Any]) -> dict: ...


class AuthGatewayProtocol(Protocol):
    def sign_in_with_password(self, email: str, password: str) -> AuthUser: ...

    def sign_up(self, email: str, password: str, metadata: Mapping[str, Any]) -> Optional[AuthUser]: ...

    def sign_out(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> None: ...

    def reset_password_for_email(self, email: str, redirect_to: str) -> None: ...

    def update_password(self, access_token: str, refresh_token: Optional[str], password: str) -> None: ...


class FileStorageProtocol(Protocol):
    def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> str: ...

    def remove(self, *, bucket: str, paths: Iterable[str]) -> None: ...


__all__ = [
    "AuthGatewayError",
    "AuthGatewayProtocol",
    "AuthUser",
    "DatastoreError",
    "DatastoreProtocol",
    "FileStorageProtocol",
]
