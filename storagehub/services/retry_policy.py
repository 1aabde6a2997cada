"""Retry decision for failed uploads.

A failed record is either rescheduled after a constant delay or, once its
error count reaches the threshold, dropped from the queue for good. There is
no exponential growth: the threshold alone bounds the number of attempts.
"""

from __future__ import annotations

from dataclasses import dataclass

from storagehub.schemas.transfer import SyncStatus, TransferRecord

DEFAULT_ERROR_THRESHOLD = 100
DEFAULT_RETRY_DELAY_MS = 15 * 60 * 1000


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of the retry policy for one failed record."""

    drop: bool
    scheduled_at: int | None = None


def decide_retry(
    error_count: int,
    error_threshold: int,
    now_ms: int,
    retry_delay_ms: int,
) -> RetryDecision:
    """Return whether to drop a failed record or when to try it again."""
    if error_count >= error_threshold:
        return RetryDecision(drop=True)
    return RetryDecision(drop=False, scheduled_at=now_ms + retry_delay_ms)


@dataclass(frozen=True)
class RetryPolicy:
    """Configured retry policy."""

    error_threshold: int = DEFAULT_ERROR_THRESHOLD
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        if self.error_threshold < 1:
            msg = f"error_threshold must be >= 1, got {self.error_threshold}"
            raise ValueError(msg)
        if self.retry_delay_ms < 0:
            msg = f"retry_delay_ms must be >= 0, got {self.retry_delay_ms}"
            raise ValueError(msg)

    def decide(self, record: TransferRecord, now_ms: int) -> RetryDecision:
        return decide_retry(record.error_count, self.error_threshold, now_ms, self.retry_delay_ms)

    def reschedule(self, record: TransferRecord, decision: RetryDecision) -> TransferRecord:
        """Return the record to the queue as instructed by a non-drop decision."""
        if decision.drop or decision.scheduled_at is None:
            msg = "Cannot reschedule a record the policy decided to drop"
            raise ValueError(msg)
        record.status = SyncStatus.IDLE
        record.scheduled_at = decision.scheduled_at
        return record
