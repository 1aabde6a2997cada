"""Upload queue schemas."""

from __future__ import annotations

import json
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field


class SyncStatus(IntEnum):
    """Synchronization state of a queued file.

    The ordinal is what gets persisted, so members must never be reordered.
    """

    IDLE = 0
    REQUESTING_UPLOAD = 1
    UPLOADING = 2
    UPLOADED = 3
    ERROR = 4


IN_FLIGHT_STATUSES = frozenset({SyncStatus.REQUESTING_UPLOAD, SyncStatus.UPLOADING})


class TransferRecord(BaseModel):
    """A file queued for upload, as seen by the sync engine."""

    id: int | None = None
    file_path: str
    file_name: str
    created_at: str | None = None
    total_bytes: int = Field(ge=0)
    uploaded_bytes: int = Field(default=0, ge=0)
    session_id: str | None = None
    status: SyncStatus = SyncStatus.IDLE
    error_count: int = Field(default=0, ge=0)
    scheduled_at: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def has_session(self) -> bool:
        return bool(self.session_id)

    @property
    def progress(self) -> float:
        """Fraction of the file acknowledged by the server, between 0 and 1."""
        if self.total_bytes <= 0:
            return 0.0
        return min(self.uploaded_bytes / self.total_bytes, 1.0)


def encode_metadata(metadata: dict[str, Any] | None) -> str | None:
    """Serialize metadata for storage. Raises ValueError if not JSON-encodable."""
    if metadata is None:
        return None
    try:
        return json.dumps(metadata)
    except TypeError as exc:
        msg = f"Metadata is not JSON-serializable: {exc}"
        raise ValueError(msg) from exc


def decode_metadata(raw: str | None) -> dict[str, Any]:
    """Parse stored metadata text. Raises ValueError unless it holds a JSON object."""
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        msg = f"Stored metadata must be a JSON object, got {type(data).__name__}"
        raise ValueError(msg)
    return data


class FileCreate(BaseModel):
    """Request to queue a local file for upload."""

    file_path: str = Field(min_length=1, description="Path of the local file to upload")
    file_name: str | None = Field(
        default=None, description="Remote file name; defaults to the local base name"
    )
    total_bytes: int | None = Field(
        default=None, ge=0, description="Expected file size; must match the file on disk"
    )
    time: str | None = Field(default=None, description="Creation timestamp, any common format")
    metadata: dict[str, Any] = Field(default_factory=dict)


class FileResponse(BaseModel):
    """Queued file as returned by the API."""

    id: int
    file_path: str
    file_name: str
    created_at: str | None = None
    total_bytes: int
    uploaded_bytes: int
    status: str
    error_count: int
    scheduled_at: int
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: TransferRecord) -> FileResponse:
        if record.id is None:
            msg = "Cannot describe a record that has not been persisted"
            raise ValueError(msg)
        return cls(
            id=record.id,
            file_path=record.file_path,
            file_name=record.file_name,
            created_at=record.created_at,
            total_bytes=record.total_bytes,
            uploaded_bytes=record.uploaded_bytes,
            status=record.status.name.lower(),
            error_count=record.error_count,
            scheduled_at=record.scheduled_at,
            metadata=record.metadata,
        )


class SyncStatusResponse(BaseModel):
    """Current state of the upload engine."""

    is_syncing: bool
    syncing_file: FileResponse | None = None
    progress: float = Field(ge=0, le=1)
