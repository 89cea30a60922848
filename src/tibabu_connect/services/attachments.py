"""Local storage for files attached to messages."""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path, PurePath

from tibabu_connect.core.settings import settings
from tibabu_connect.models.message import MESSAGE_TYPE_FILE, MESSAGE_TYPE_IMAGE

from .errors import MessageValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingUpload:
    """File received with a send request but not yet written to disk."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StoredAttachment:
    """Attachment written to the upload directory."""

    path: Path
    url: str
    file_name: str
    file_size: int
    message_type: str


class AttachmentStore:
    """Writes uploads under a directory served at a public URL prefix."""

    def __init__(
        self,
        root: str | Path | None = None,
        url_prefix: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.root = Path(root or settings.upload_dir)
        self.url_prefix = (url_prefix or settings.upload_url_prefix).rstrip("/")
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_upload_bytes

    def validate(self, upload: PendingUpload) -> None:
        """Reject uploads without a usable name or over the size bound."""
        if not PurePath(upload.filename).name:
            raise MessageValidationError("Attachment must have a file name")
        if upload.size == 0:
            raise MessageValidationError("Attachment is empty")
        if upload.size > self.max_bytes:
            raise MessageValidationError(
                f"Attachment exceeds the maximum size of {self.max_bytes} bytes"
            )

    def save(self, upload: PendingUpload) -> StoredAttachment:
        """Persist ``upload`` and describe where it can be fetched."""
        self.validate(upload)
        original_name = PurePath(upload.filename).name
        stored_name = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}-{original_name}"

        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / stored_name
        path.write_bytes(upload.data)
        logger.debug("Stored attachment %s (%d bytes)", stored_name, upload.size)

        message_type = (
            MESSAGE_TYPE_IMAGE
            if upload.content_type.startswith("image/")
            else MESSAGE_TYPE_FILE
        )
        return StoredAttachment(
            path=path,
            url=f"{self.url_prefix}/{stored_name}",
            file_name=original_name,
            file_size=upload.size,
            message_type=message_type,
        )

    def discard(self, stored: StoredAttachment) -> None:
        """Remove an attachment whose message was never persisted."""
        try:
            stored.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove orphaned attachment %s: %s", stored.path, exc)


class _AttachmentStoreSingleton:
    """Singleton wrapper for AttachmentStore."""

    _instance: AttachmentStore | None = None

    @classmethod
    def get_instance(cls) -> AttachmentStore:
        if cls._instance is None:
            cls._instance = AttachmentStore()
        return cls._instance


def get_attachment_store() -> AttachmentStore:
    """Return the process-wide attachment store."""
    return _AttachmentStoreSingleton.get_instance()
