"""Attachment uploads forwarded to the backend's file store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import UploadFile

from ..chat.session import ChatSession
from ..upstream import UpstreamClient, UpstreamError

logger = logging.getLogger(__name__)


ALLOWED_ATTACHMENT_MIME_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/markdown",
        "text/x-tex",
        "application/x-tex",
    }
)

ALLOWED_ATTACHMENT_EXTENSIONS: frozenset[str] = frozenset(
    {".pdf", ".doc", ".docx", ".txt", ".tex", ".md"}
)


class AttachmentError(RuntimeError):
    """Base error raised for attachment failures."""


class UnsupportedAttachmentType(AttachmentError):
    """Raised when an unsupported file type is uploaded."""


class AttachmentTooLarge(AttachmentError):
    """Raised when an uploaded file exceeds the configured limit."""


class AttachmentUploadFailed(AttachmentError):
    """Raised when the backend rejects the upload or returns no identifier."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass(frozen=True)
class UploadedFile:
    id: str
    filename: str
    mime_type: str
    size_bytes: int


def _extension(filename: str) -> str:
    _, dot, suffix = filename.rpartition(".")
    return f".{suffix.lower()}" if dot else ""


class AttachmentService:
    """Validate uploads, forward them upstream and record their ids."""

    def __init__(
        self,
        client: UpstreamClient,
        *,
        max_size_bytes: int,
    ) -> None:
        self._client = client
        self._max_size_bytes = max_size_bytes

    async def save_upload(
        self,
        *,
        session: ChatSession,
        upload: UploadFile,
    ) -> UploadedFile:
        """Upload a file and add its identifier to the session's pending set."""

        filename = upload.filename or "file.bin"
        mime_type = (upload.content_type or "application/octet-stream").lower()
        if (
            mime_type not in ALLOWED_ATTACHMENT_MIME_TYPES
            and _extension(filename) not in ALLOWED_ATTACHMENT_EXTENSIONS
        ):
            raise UnsupportedAttachmentType(mime_type or "unknown")

        data = await self._read_upload(upload)
        if not data:
            raise AttachmentError("Uploaded file was empty")

        try:
            body = await self._client.upload_file(
                filename=filename,
                data=data,
                content_type=mime_type,
            )
        except UpstreamError as exc:
            raise AttachmentUploadFailed(exc.status_code, exc.detail) from exc

        file_id = body.get("id")
        if not isinstance(file_id, str) or not file_id:
            raise AttachmentUploadFailed(502, "No file ID returned from upstream")

        session.add_file_ids([file_id])
        logger.info(
            "Uploaded attachment %s (%s, %d bytes) for session %s",
            file_id,
            mime_type,
            len(data),
            session.session_id,
        )
        return UploadedFile(
            id=file_id,
            filename=filename,
            mime_type=mime_type,
            size_bytes=len(data),
        )

    async def delete(self, file_id: str, *, session: ChatSession | None) -> bool:
        """Forget ``file_id`` locally and delete it upstream when possible."""

        removed = session.discard_file_id(file_id) if session is not None else False
        try:
            await self._client.delete_file(file_id)
        except UpstreamError as exc:
            logger.warning(
                "Failed to delete attachment %s upstream (%s): %s",
                file_id,
                exc.status_code,
                exc.detail,
            )
        return removed

    async def _read_upload(self, upload: UploadFile) -> bytes:
        chunk_size = 1024 * 1024  # 1 MiB
        size = 0
        chunks: list[bytes] = []
        try:
            while True:
                chunk = await upload.read(chunk_size)
                if not chunk:
                    break
                size += len(chunk)
                if size > self._max_size_bytes:
                    raise AttachmentTooLarge(
                        f"Attachment exceeded {self._max_size_bytes} bytes limit"
                    )
                chunks.append(chunk)
        finally:
            await upload.close()
        return b"".join(chunks)


__all__ = [
    "ALLOWED_ATTACHMENT_MIME_TYPES",
    "AttachmentError",
    "AttachmentService",
    "AttachmentTooLarge",
    "AttachmentUploadFailed",
    "UnsupportedAttachmentType",
    "UploadedFile",
]
