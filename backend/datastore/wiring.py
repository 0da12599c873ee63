"""
Wiring helper selecting the hosted (Supabase) or in-memory backend.

Why:
    Routes never construct clients themselves. They ask the wired `Backend`
    for a datastore bound to the caller's access token so that row-level
    security applies to every read and write.

Behavior:
    - `DATASTORE_BACKEND=memory` wires the offline backend (tests, demos).
    - Otherwise Supabase is wired from SUPABASE_URL/SUPABASE_ANON_KEY. The
      service-role key is only used for the webhook handler, which runs
      without a user.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .memory import InMemoryBackend
from .ports import AuthGatewayProtocol, DatastoreProtocol, FileStorageProtocol

logger = logging.getLogger("clearcourse.datastore")


@dataclass
class Backend:
    name: str
    auth: AuthGatewayProtocol
    _datastore_factory: Callable[[Optional[str]], DatastoreProtocol]
    _service_factory: Callable[[], DatastoreProtocol]
    _files_factory: Callable[[Optional[str]], FileStorageProtocol]
    memory: Optional[InMemoryBackend] = None

    def datastore_for(self, access_token: Optional[str]) -> DatastoreProtocol:
        return self._datastore_factory(access_token)

    def service_datastore(self) -> DatastoreProtocol:
        return self._service_factory()

    def files_for(self, access_token: Optional[str]) -> FileStorageProtocol:
        return self._files_factory(access_token)


def build_memory_backend(memory: Optional[InMemoryBackend] = None) -> Backend:
    mem = memory or InMemoryBackend()
    return Backend(
        name="memory",
        auth=mem.auth(),
        _datastore_factory=mem.datastore,
        _service_factory=mem.service_datastore,
        _files_factory=lambda _token: mem.file_storage(),
        memory=mem,
    )


def build_supabase_backend(url: str, anon_key: str, service_role_key: str = "") -> Backend:
    # Lazy import keeps the client library off the memory/test path.
    from .storage_supabase import SupabaseFileStorage
    from .supabase_backend import SupabaseAuthGateway, SupabaseDatastore, _client_for

    def _datastore(token: Optional[str]) -> DatastoreProtocol:
        return SupabaseDatastore.connect(url, anon_key, token)

    def _service() -> DatastoreProtocol:
        if not service_role_key:
            raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY is required for service operations")
        return SupabaseDatastore.connect(url, service_role_key)

    def _files(token: Optional[str]) -> FileStorageProtocol:
        return SupabaseFileStorage(_client_for(url, anon_key, token))

    return Backend(
        name="supabase",
        auth=SupabaseAuthGateway(url, anon_key),
        _datastore_factory=_datastore,
        _service_factory=_service,
        _files_factory=_files,
    )


def build_backend(settings) -> Backend:
    """Return the backend selected by `settings.datastore_backend`."""
    if settings.datastore_backend == "memory":
        logger.info("datastore.wired backend=memory")
        return build_memory_backend()
    if not settings.supabase_url or not settings.supabase_anon_key:
        logger.warning("datastore.unconfigured falling back to memory backend")
        return build_memory_backend()
    logger.info("datastore.wired backend=supabase")
    return build_supabase_backend(
        settings.supabase_url, settings.supabase_anon_key, settings.supabase_service_role_key
    )


__all__ = ["Backend", "build_backend", "build_memory_backend", "build_supabase_backend"]
