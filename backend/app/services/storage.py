"""Attachment object storage backed by a local bucket directory."""

from __future__ import annotations

import asyncio
import secrets
import string
import time
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse
from uuid import UUID

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def classify_file_type(mime_type: str) -> str:
    """Bucket a MIME type into image, audio, video, document or other."""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("video/"):
        return "video"
    if any(marker in mime_type for marker in ("pdf", "document", "text")):
        return "document"
    return "other"


def build_object_path(request_id: UUID, file_name: str, *, now_ms: int | None = None) -> str:
    """Return ``{request_id}/{epoch_ms}-{random}.{ext}`` for a new upload."""
    extension = file_name.rsplit(".", 1)[-1] if "." in file_name else "bin"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"{request_id}/{stamp}-{suffix}.{extension}"


class AttachmentStorage:
    """Store, address and remove attachment objects within a single bucket."""

    def __init__(
        self,
        *,
        root: str | Path | None = None,
        bucket: str | None = None,
        public_base_url: str | None = None,
    ) -> None:
        self.root = Path(root or settings.storage_root)
        self.bucket = bucket or settings.storage_bucket
        self.public_base_url = (public_base_url or settings.storage_public_base_url).rstrip("/")

    def _resolve(self, object_path: str) -> Path:
        bucket_dir = (self.root / self.bucket).resolve()
        target = (bucket_dir / PurePosixPath(object_path)).resolve()
        if not target.is_relative_to(bucket_dir):
            raise ValueError(f"Object path escapes bucket: {object_path!r}")
        return target

    def public_url(self, object_path: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{object_path}"

    def object_path_from_url(self, file_url: str) -> str:
        """Recover the in-bucket path from a public URL."""
        parts = [part for part in urlparse(file_url).path.split("/") if part]
        if self.bucket not in parts:
            raise ValueError(f"URL does not reference bucket {self.bucket!r}")
        return "/".join(parts[parts.index(self.bucket) + 1 :])

    async def upload(self, object_path: str, content: bytes) -> str:
        """Write a new object and return its public URL; existing objects are never overwritten."""
        target = self._resolve(object_path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("xb") as handle:
                handle.write(content)

        await asyncio.to_thread(_write)
        logger.info(
            "storage.upload.complete",
            extra={"bucket": self.bucket, "path": object_path, "size": len(content)},
        )
        return self.public_url(object_path)

    async def remove(self, object_path: str) -> None:
        target = self._resolve(object_path)
        await asyncio.to_thread(target.unlink)


def get_attachment_storage() -> AttachmentStorage:
    return AttachmentStorage()
