"""Base protocol and data classes for upload progress reporting."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from storagehub.schemas.transfer import SyncStatus, TransferRecord

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class UploadEvent:
    """State of a queued file right after a persisted transition."""

    record_id: int | None
    file_name: str
    status: SyncStatus
    uploaded_bytes: int
    total_bytes: int

    @classmethod
    def from_record(cls, record: TransferRecord) -> UploadEvent:
        return cls(
            record_id=record.id,
            file_name=record.file_name,
            status=record.status,
            uploaded_bytes=record.uploaded_bytes,
            total_bytes=record.total_bytes,
        )


@runtime_checkable
class EventSink(Protocol):
    """Receiver of upload progress events."""

    def record_event(self, event: UploadEvent) -> None:
        """Handle one event. Called synchronously by the sync engine."""
        ...


def content_type_for(file_name: str) -> str:
    """Guess the MIME type the server should store the upload as."""
    content_type, _ = mimetypes.guess_type(file_name)
    return content_type or DEFAULT_CONTENT_TYPE
