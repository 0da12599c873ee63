"""
Course media uploads: bucket selection, unique names and URL-based deletion.

Why:
    Instructors attach videos, images and documents to lessons. The MIME type
    decides the storage bucket so that bucket policies (size limits, public
    access) stay simple on the backend.
"""
from __future__ import annotations

import logging
import re
import secrets
import string
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlparse

from backend.datastore.ports import DatastoreError, FileStorageProtocol

logger = logging.getLogger("clearcourse.files")

VIDEO_BUCKET = "course-videos"
IMAGE_BUCKET = "course-images"
DOCUMENT_BUCKET = "course-documents"
BUCKETS = (VIDEO_BUCKET, IMAGE_BUCKET, DOCUMENT_BUCKET)

BUCKET_MAP: dict[str, str] = {
    "video/mp4": VIDEO_BUCKET,
    "video/webm": VIDEO_BUCKET,
    "video/quicktime": VIDEO_BUCKET,
    "video/x-msvideo": VIDEO_BUCKET,
    "image/jpeg": IMAGE_BUCKET,
    "image/png": IMAGE_BUCKET,
    "image/gif": IMAGE_BUCKET,
    "image/webp": IMAGE_BUCKET,
    "image/svg+xml": IMAGE_BUCKET,
    "application/pdf": DOCUMENT_BUCKET,
    "application/msword": DOCUMENT_BUCKET,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DOCUMENT_BUCKET,
    "text/plain": DOCUMENT_BUCKET,
}

_ALPHABET = string.ascii_lowercase + string.digits


class FileUploadError(Exception):
    """Upload/delete failure with a user-presentable message."""


@dataclass(frozen=True)
class UploadResult:
    url: str
    path: str
    size: int
    type: str
    original_filename: str


def bucket_for_mime(mime_type: str) -> str:
    bucket = BUCKET_MAP.get((mime_type or "").lower())
    if not bucket:
        raise FileUploadError(f"Unsupported file type: {mime_type or 'unknown'}")
    return bucket


def unique_file_name(original_name: str, *, now_ms: Optional[int] = None) -> str:
    """Return `<sanitized-stem>-<millis>-<rand6>.<ext>`.

    Every non-alphanumeric character of the stem becomes "-". A name without
    a dot keeps the whole name as extension, mirroring a plain split on ".".
    """
    name = original_name or "file"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    rand = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    extension = name.rsplit(".", 1)[-1]
    stem = re.sub(r"\.[^/.]+$", "", name)
    stem = re.sub(r"[^a-zA-Z0-9]", "-", stem)
    return f"{stem}-{stamp}-{rand}.{extension}"


def file_type_from_mime(mime_type: str) -> str:
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("image/"):
        return "image"
    return "document"


def format_file_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def parse_storage_url(url: str) -> tuple[str, str]:
    """Resolve (bucket, path) from a public object URL."""
    parts = urlparse(url or "").path.split("/")
    for idx, part in enumerate(parts):
        if part in BUCKETS:
            path = "/".join(parts[idx + 1:])
            if not path:
                break
            return part, unquote(path)
    raise FileUploadError("Could not determine bucket from URL")


@dataclass
class FileService:
    storage: FileStorageProtocol

    def upload(self, *, filename: str, content: bytes, content_type: str) -> UploadResult:
        bucket = bucket_for_mime(content_type)
        path = unique_file_name(filename)
        try:
            url = self.storage.upload(bucket=bucket, path=path, content=content, content_type=content_type)
        except DatastoreError as exc:
            logger.error("files.upload.failed bucket=%s code=%s", bucket, exc.code)
            raise FileUploadError(f"Failed to upload file: {exc.message}") from exc
        logger.info("files.uploaded bucket=%s path=%s size=%s", bucket, path, len(content))
        return UploadResult(
            url=url,
            path=path,
            size=len(content),
            type=content_type,
            original_filename=filename,
        )

    def delete(self, url: str) -> None:
        bucket, path = parse_storage_url(url)
        try:
            self.storage.remove(bucket=bucket, paths=[path])
        except DatastoreError as exc:
            logger.error("files.delete.failed bucket=%s code=%s", bucket, exc.code)
            raise FileUploadError(f"Failed to delete file: {exc.message}") from exc


__all__ = [
    "BUCKET_MAP",
    "FileService",
    "FileUploadError",
    "UploadResult",
    "bucket_for_mime",
    "file_type_from_mime",
    "format_file_size",
    "parse_storage_url",
    "unique_file_name",
]
