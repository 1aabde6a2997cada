"""Single-flight upload engine.

The engine drains the upload queue one file at a time. A cycle picks the
eligible record with the earliest scheduled time, drives it through the
upload protocol step by step, persisting each transition before acting on
it, and moves straight on to the next eligible record once the current one
is uploaded, rescheduled, or dropped.

Thread-safety: the busy flag is checked and set without an await in
between, so ``trigger()`` is safe under asyncio's cooperative model. Do NOT
drive one engine from several event loops or OS threads.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from storagehub.schemas.transfer import IN_FLIGHT_STATUSES, SyncStatus, TransferRecord
from storagehub.services.datetime_service import now_millis
from storagehub.transport.base import UploadEvent

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from storagehub.services.record_store import RecordStore
    from storagehub.services.retry_policy import RetryPolicy
    from storagehub.transport.base import EventSink
    from storagehub.transport.chunked import ChunkTransport

logger = logging.getLogger(__name__)


def select_candidate(records: Iterable[TransferRecord], now_ms: int) -> TransferRecord | None:
    """Pick the idle, due record with the earliest schedule (lowest id on ties)."""
    eligible = [r for r in records if r.status == SyncStatus.IDLE and r.scheduled_at <= now_ms]
    if not eligible:
        return None
    return min(eligible, key=lambda r: (r.scheduled_at, r.id if r.id is not None else 0))


def _record_id(record: TransferRecord) -> int:
    if record.id is None:
        msg = f"Queued file {record.file_name!r} has no id; it was never stored"
        raise ValueError(msg)
    return record.id


class SyncEngine:
    """Drives queued files through the resumable upload protocol."""

    def __init__(
        self,
        store: RecordStore,
        transport: ChunkTransport,
        retry_policy: RetryPolicy,
        event_sink: EventSink | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._store = store
        self._transport = transport
        self._retry_policy = retry_policy
        self._event_sink = event_sink
        self._clock = clock
        self._busy = False
        self._active: TransferRecord | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_syncing(self) -> bool:
        """Whether a cycle is running."""
        return self._busy

    @property
    def syncing_file(self) -> TransferRecord | None:
        """The record currently being uploaded, if any."""
        return self._active

    @property
    def progress(self) -> float:
        """Progress of the active record between 0 and 1; 0 when idle."""
        if self._active is None:
            return 0.0
        return self._active.progress

    def trigger(self) -> asyncio.Task[None] | None:
        """Start a cycle unless one is already running.

        Returns the new cycle's task, or None when the call was a no-op.
        Must be called from within a running event loop.
        """
        if self._busy:
            logger.debug("Upload cycle already running, trigger ignored")
            return None
        task = asyncio.get_running_loop().create_task(self._run_cycle())
        self._busy = True
        self._task = task
        return task

    async def wait_idle(self) -> None:
        """Wait for the running cycle, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await task

    async def sync_now(self) -> None:
        """Run a cycle, or join the running one, and wait until it ends."""
        self.trigger()
        await self.wait_idle()

    async def _run_cycle(self) -> None:
        try:
            while True:
                record = await self._next_candidate()
                if record is None:
                    break
                if not await self._advance(record):
                    break
        except Exception:
            logger.exception("Upload cycle aborted")
        finally:
            self._active = None
            self._busy = False
            self._task = None

    async def _next_candidate(self) -> TransferRecord | None:
        now = self._clock()
        while True:
            records = await self._store.list_pending(now)
            settled = [r for r in records if await self._settle(r, now)]
            candidate = select_candidate(settled, now)
            # A full page may have been settled away entirely; look past it
            if candidate is not None or len(records) < self._store.list_limit:
                return candidate

    async def _settle(self, record: TransferRecord, now: int) -> bool:
        """Bring a record left mid-step by an aborted cycle back to rest.

        No step is in flight when a cycle selects, so a stored in-flight status
        is stale. Returns False if the record was removed from the queue.
        """
        if record.status in IN_FLIGHT_STATUSES:
            logger.warning(
                "Recovering %s from interrupted %s step", record.file_name, record.status.name
            )
            record.status = SyncStatus.IDLE
            await self._store.update(record)
            return True
        if record.status == SyncStatus.UPLOADED:
            await self._store.delete(_record_id(record))
            return False
        if record.status == SyncStatus.ERROR:
            return await self._apply_retry(record, now)
        return True

    async def _advance(self, record: TransferRecord) -> bool:
        """Upload steps for one record until it leaves the queue or gets rescheduled.

        Returns False when the cycle has to stop with the record still pending.
        """
        self._active = record
        try:
            while True:
                if record.has_session:
                    record.status = SyncStatus.UPLOADING
                    if not await self._persist(record):
                        return True
                    record = await self._transport.upload_chunk(record)
                else:
                    record.status = SyncStatus.REQUESTING_UPLOAD
                    if not await self._persist(record):
                        return True
                    record = await self._transport.request_session(record)
                self._active = record

                if not await self._persist(record):
                    return True
                self._emit(record)

                if record.status == SyncStatus.IDLE:
                    continue
                if record.status in IN_FLIGHT_STATUSES:
                    return False
                if record.status == SyncStatus.UPLOADED:
                    await self._store.delete(_record_id(record))
                    logger.info("Uploaded %s (%d bytes)", record.file_name, record.total_bytes)
                    return True
                await self._apply_retry(record, self._clock())
                return True
        finally:
            self._active = None

    async def _persist(self, record: TransferRecord) -> bool:
        """Write the record; False if it was deleted from the queue meanwhile."""
        if await self._store.update(record):
            return True
        logger.info("Queued file %s was removed during upload, skipping", record.id)
        return False

    async def _apply_retry(self, record: TransferRecord, now: int) -> bool:
        """Reschedule or drop a failed record. Returns True if it stays queued."""
        decision = self._retry_policy.decide(record, now)
        if decision.drop:
            await self._store.delete(_record_id(record))
            logger.warning(
                "Dropping %s after %d failed attempts", record.file_name, record.error_count
            )
            return False
        self._retry_policy.reschedule(record, decision)
        await self._store.update(record)
        self._emit(record)
        logger.warning(
            "Upload of %s failed (%d/%d), retrying in %ds",
            record.file_name,
            record.error_count,
            self._retry_policy.error_threshold,
            (record.scheduled_at - now) // 1000,
        )
        return True

    def _emit(self, record: TransferRecord) -> None:
        if self._event_sink is None:
            return
        try:
            self._event_sink.record_event(UploadEvent.from_record(record))
        except Exception:
            logger.warning("Event sink failed for %s", record.file_name, exc_info=True)
