"""Durable storage for queued transfer records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from storagehub.exceptions import RecordStoreError
from storagehub.models.transfer import TransferFile
from storagehub.schemas.transfer import (
    SyncStatus,
    TransferRecord,
    decode_metadata,
    encode_metadata,
)

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 1000


def _to_columns(record: TransferRecord) -> dict[str, object]:
    return {
        "time": record.created_at,
        "file_path": record.file_path,
        "file_name": record.file_name,
        "total_bytes": record.total_bytes,
        "uploaded_bytes": record.uploaded_bytes,
        "sync_status": int(record.status),
        "session_id": record.session_id,
        "error_count": record.error_count,
        "process_start_time": record.scheduled_at,
        "metadata_json": encode_metadata(record.metadata),
    }


def _from_row(row: TransferFile) -> TransferRecord:
    try:
        metadata = decode_metadata(row.metadata_json)
    except ValueError:
        logger.warning("Discarding unreadable metadata of queued file %s", row.id)
        metadata = {}
    try:
        status = SyncStatus(row.sync_status)
    except ValueError:
        logger.warning("Queued file %s has unknown status %r", row.id, row.sync_status)
        status = SyncStatus.ERROR
    return TransferRecord(
        id=row.id,
        file_path=row.file_path or "",
        file_name=row.file_name or "",
        created_at=row.time,
        total_bytes=row.total_bytes,
        uploaded_bytes=min(row.uploaded_bytes, row.total_bytes),
        session_id=row.session_id or None,
        status=status,
        error_count=row.error_count,
        scheduled_at=row.process_start_time,
        metadata=metadata,
    )


class RecordStore:
    """Transactional table of transfer records backed by SQLAlchemy.

    Every method opens its own session, so listing from request handlers is
    safe while the sync engine is writing. Database failures surface as
    ``RecordStoreError``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        list_limit: int = DEFAULT_LIST_LIMIT,
    ) -> None:
        self._session_factory = session_factory
        self._list_limit = list_limit

    @property
    def list_limit(self) -> int:
        return self._list_limit

    async def insert(self, record: TransferRecord) -> TransferRecord:
        """Insert a record, replacing any existing row with the same id.

        Returns a copy of the record carrying its assigned id.
        """
        columns = _to_columns(record)
        try:
            async with self._session_factory() as session:
                row = await session.merge(TransferFile(id=record.id, **columns))
                await session.commit()
                record_id = row.id
        except SQLAlchemyError as exc:
            msg = f"Failed to insert queued file {record.file_name!r}: {exc}"
            raise RecordStoreError(msg) from exc
        logger.debug("Inserted queued file %s (%s)", record_id, record.file_name)
        return record.model_copy(update={"id": record_id})

    async def update(self, record: TransferRecord) -> bool:
        """Write all fields of a persisted record. Returns False if the row is gone."""
        if record.id is None:
            msg = "Cannot update a record that has not been inserted"
            raise ValueError(msg)
        stmt = (
            update(TransferFile)
            .where(TransferFile.id == record.id)
            .values(**_to_columns(record))
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to update queued file {record.id}: {exc}"
            raise RecordStoreError(msg) from exc
        logger.debug(
            "Updated queued file %s: status=%s uploaded=%d/%d errors=%d",
            record.id,
            record.status.name,
            record.uploaded_bytes,
            record.total_bytes,
            record.error_count,
        )
        return bool(result.rowcount)

    async def delete(self, record_id: int) -> bool:
        """Delete a record by id. Returns True if a row was removed."""
        stmt = delete(TransferFile).where(TransferFile.id == record_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to delete queued file {record_id}: {exc}"
            raise RecordStoreError(msg) from exc
        return bool(result.rowcount)

    async def get(self, record_id: int) -> TransferRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(TransferFile, record_id)
        except SQLAlchemyError as exc:
            msg = f"Failed to load queued file {record_id}: {exc}"
            raise RecordStoreError(msg) from exc
        return _from_row(row) if row is not None else None

    async def list_records(self, status: SyncStatus | None = None) -> list[TransferRecord]:
        """List records newest first, capped at the configured list limit."""
        stmt = select(TransferFile).order_by(TransferFile.id.desc()).limit(self._list_limit)
        if status is not None:
            stmt = stmt.where(TransferFile.sync_status == int(status))
        return await self._fetch(stmt)

    async def list_pending(self, now_ms: int) -> list[TransferRecord]:
        """List records the sync engine has to look at, earliest schedule first.

        That is every record not at rest in ``IDLE`` plus the idle ones that
        are due at ``now_ms``, ordered by schedule then id and capped at the
        list limit.
        """
        stmt = (
            select(TransferFile)
            .where(
                or_(
                    TransferFile.sync_status != int(SyncStatus.IDLE),
                    TransferFile.process_start_time <= now_ms,
                )
            )
            .order_by(TransferFile.process_start_time, TransferFile.id)
            .limit(self._list_limit)
        )
        return await self._fetch(stmt)

    async def _fetch(self, stmt: Select[tuple[TransferFile]]) -> list[TransferRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            msg = f"Failed to list queued files: {exc}"
            raise RecordStoreError(msg) from exc
        return [_from_row(row) for row in rows]
