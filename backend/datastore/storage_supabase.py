"""
Supabase-backed storage adapter for course media (videos, images, documents).

The client is expected to expose `.storage.from_(bucket)` which returns an
object offering:

- upload(path, file, file_options) -> Any
- get_public_url(path) -> str
- remove([path]) -> Any

Security:
- The client must carry the signed-in user's access token so storage
  policies apply to the uploader, not to the service role.
"""
from __future__ import annotations

from typing import Any, Iterable

from .ports import DatastoreError, FileStorageProtocol


class SupabaseFileStorage(FileStorageProtocol):
    """Storage adapter using a supabase client for Storage operations."""

    def __init__(self, client: Any):
        self._client = client

    def _bucket(self, bucket: str) -> Any:
        """Return a bucket proxy from either supabase client or storage3 client."""
        c = self._client
        storage = getattr(c, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(bucket)
        if hasattr(c, "from_"):
            return c.from_(bucket)  # type: ignore[attr-defined]
        raise RuntimeError("invalid_supabase_client")

    @staticmethod
    def _normalize_key(bucket: str, path: str) -> str:
        # storage3 prepends the bucket id itself
        norm_key = path.lstrip("/")
        prefix = f"{bucket}/"
        if norm_key.startswith(prefix):
            norm_key = norm_key[len(prefix):]
        return norm_key

    def upload(self, *, bucket: str, path: str, content: bytes, content_type: str) -> str:
        b = self._bucket(bucket)
        key = self._normalize_key(bucket, path)
        try:
            b.upload(key, content, {"content-type": content_type, "cache-control": "3600", "upsert": "false"})
        except Exception as exc:
            raise DatastoreError(str(exc), code="storage_upload_failed") from exc
        url = b.get_public_url(key)
        # Older clients return {"publicURL": ...}
        if isinstance(url, dict):
            url = url.get("publicURL") or url.get("publicUrl") or url.get("public_url")
        if not url:
            raise DatastoreError("missing public url", code="storage_upload_failed")
        return str(url).rstrip("?")

    def remove(self, *, bucket: str, paths: Iterable[str]) -> None:
        b = self._bucket(bucket)
        keys = [self._normalize_key(bucket, p) for p in paths]
        try:
            b.remove(keys)
        except Exception as exc:
            raise DatastoreError(str(exc), code="storage_remove_failed") from exc


__all__ = ["SupabaseFileStorage"]
