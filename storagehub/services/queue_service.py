"""Upload queue entry points: add, list, and delete queued files."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from storagehub.schemas.transfer import SyncStatus, TransferRecord, encode_metadata
from storagehub.services.datetime_service import format_iso, now_millis, now_utc, parse_datetime

if TYPE_CHECKING:
    from storagehub.services.record_store import RecordStore

logger = logging.getLogger(__name__)


async def add_file(
    store: RecordStore,
    *,
    file_path: str,
    file_name: str,
    total_bytes: int,
    metadata: dict[str, Any] | None = None,
    time: str | None = None,
    now_ms: int | None = None,
) -> TransferRecord:
    """Queue a local file for upload.

    ``time`` is normalized to ISO 8601; the current time is used when it is
    omitted. The file becomes eligible for upload immediately.
    """
    if not file_path.strip():
        msg = "file_path must not be empty"
        raise ValueError(msg)
    if not file_name.strip():
        msg = "file_name must not be empty"
        raise ValueError(msg)
    if total_bytes < 0:
        msg = f"total_bytes must be >= 0, got {total_bytes}"
        raise ValueError(msg)
    encode_metadata(metadata)

    created_at = format_iso(parse_datetime(time) if time else now_utc())
    record = TransferRecord(
        file_path=file_path,
        file_name=file_name,
        created_at=created_at,
        total_bytes=total_bytes,
        uploaded_bytes=0,
        status=SyncStatus.IDLE,
        error_count=0,
        scheduled_at=now_ms if now_ms is not None else now_millis(),
        metadata=metadata or {},
    )
    record = await store.insert(record)
    logger.info("Queued %s (%d bytes) as %s", file_name, total_bytes, record.id)
    return record


async def delete_file(store: RecordStore, record_id: int) -> bool:
    """Remove a file from the queue. Returns True if it was queued."""
    deleted = await store.delete(record_id)
    if deleted:
        logger.info("Removed queued file %s", record_id)
    return deleted


async def get_file_list(
    store: RecordStore, status: SyncStatus | None = None
) -> list[TransferRecord]:
    """Return queued files newest first, read from the store."""
    return await store.list_records(status=status)
