"""StorageHub: wiring of the upload queue, its store, and the sync engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from storagehub.database import create_engine, ensure_sqlite_dir, init_schema
from storagehub.services import queue_service
from storagehub.services.datetime_service import now_millis
from storagehub.services.record_store import RecordStore
from storagehub.services.retry_policy import RetryPolicy
from storagehub.services.sync_engine import SyncEngine
from storagehub.transport.chunked import ChunkTransport

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx
    from sqlalchemy.ext.asyncio import AsyncEngine

    from storagehub.config import Settings
    from storagehub.schemas.transfer import SyncStatus, TransferRecord
    from storagehub.transport.base import EventSink

logger = logging.getLogger(__name__)


class StorageHub:
    """Background uploader for locally queued files.

    Args:
        settings: Endpoint, queue, and database configuration.
        event_sink: Receives an event after every persisted transition.
        client: HTTP client for the upload endpoint; created if omitted.
        clock: Epoch-millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        settings: Settings,
        event_sink: EventSink | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.settings = settings
        self._event_sink = event_sink
        self._client = client
        self._clock = clock
        self._db_engine: AsyncEngine | None = None
        self._store: RecordStore | None = None
        self._transport: ChunkTransport | None = None
        self._engine: SyncEngine | None = None
        self._ticker: asyncio.Task[None] | None = None

    async def open(self) -> None:
        """Create the database schema and build the upload pipeline."""
        ensure_sqlite_dir(self.settings.database_url)
        db_engine, session_factory = create_engine(self.settings)
        await init_schema(db_engine)
        self._db_engine = db_engine
        self._store = RecordStore(session_factory, list_limit=self.settings.list_limit)
        self._transport = ChunkTransport.from_settings(self.settings, client=self._client)
        retry_policy = RetryPolicy(
            error_threshold=self.settings.error_threshold,
            retry_delay_ms=self.settings.retry_delay_ms,
        )
        self._engine = SyncEngine(
            self._store,
            self._transport,
            retry_policy,
            event_sink=self._event_sink,
            clock=self._clock,
        )
        if self.settings.sync_interval_seconds > 0:
            self._ticker = asyncio.create_task(self._tick(self.settings.sync_interval_seconds))
        logger.info("StorageHub ready (endpoint=%s)", self.settings.api_base_url or "<unset>")

    async def close(self) -> None:
        """Stop the periodic trigger, finish the running cycle, release resources."""
        if self._ticker is not None:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None
        if self._engine is not None:
            await self._engine.wait_idle()
        if self._transport is not None:
            await self._transport.close()
        if self._db_engine is not None:
            await self._db_engine.dispose()
        logger.info("StorageHub stopped")

    async def __aenter__(self) -> StorageHub:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def store(self) -> RecordStore:
        if self._store is None:
            msg = "StorageHub is not open"
            raise RuntimeError(msg)
        return self._store

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            msg = "StorageHub is not open"
            raise RuntimeError(msg)
        return self._engine

    @property
    def is_syncing(self) -> bool:
        return self._engine is not None and self._engine.is_syncing

    @property
    def syncing_file(self) -> TransferRecord | None:
        return self._engine.syncing_file if self._engine is not None else None

    @property
    def progress(self) -> float:
        return self._engine.progress if self._engine is not None else 0.0

    async def add_file(
        self,
        *,
        file_path: str,
        file_name: str,
        total_bytes: int,
        metadata: dict[str, Any] | None = None,
        time: str | None = None,
    ) -> TransferRecord:
        """Queue a file, triggering an upload cycle when ``sync_on_add`` is set."""
        record = await queue_service.add_file(
            self.store,
            file_path=file_path,
            file_name=file_name,
            total_bytes=total_bytes,
            metadata=metadata,
            time=time,
            now_ms=self._clock(),
        )
        if self.settings.sync_on_add:
            self.engine.trigger()
        return record

    async def delete_file(self, record_id: int) -> bool:
        return await queue_service.delete_file(self.store, record_id)

    async def get_file_list(self, status: SyncStatus | None = None) -> list[TransferRecord]:
        return await queue_service.get_file_list(self.store, status=status)

    def trigger_sync(self) -> bool:
        """Start an upload cycle. Returns False if one was already running."""
        return self.engine.trigger() is not None

    async def _tick(self, interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            self.engine.trigger()
