"""
Periodic maintenance for the job table.

A scheduler calls sweep() on a timer: it cancels orphaned jobs and removes
terminal jobs older than the retention windows (default: 7 days). Every
step only touches rows still matching its filter, so a sweep interrupted by
a store failure can simply be run again.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Collection, Optional, Tuple

from .config import DEFAULT_RETENTION_DAYS
from .errors import TransientStoreError
from .registry import JobRegistry
from .retry import exponential_backoff


@dataclass
class SweepResult:
    orphans_canceled: int = 0
    old_removed: int = 0
    failed_removed: int = 0

    @property
    def total(self) -> int:
        return self.orphans_canceled + self.old_removed + self.failed_removed


def cleanup_jobs(
    registry: JobRegistry,
    days: int = DEFAULT_RETENTION_DAYS,
    failed_days: int = DEFAULT_RETENTION_DAYS,
) -> Tuple[int, int]:
    """
    Remove terminal jobs older than the specified number of days.

    Args:
        registry: Registry to clean up
        days: Days to keep FINISHED and CANCELED jobs, counted from finish time
        failed_days: Days to keep FAILED jobs, counted from start time

    Returns:
        Tuple of (old_jobs_removed, failed_jobs_removed)
    """
    now = registry.clock()
    old_removed = registry.cleanup_old_jobs(now - timedelta(days=days))
    failed_removed = registry.cleanup_failed_jobs(now - timedelta(days=failed_days))

    registry.logger.info(
        f"Cleanup complete: {old_removed + failed_removed} removed",
        old_removed=old_removed,
        failed_removed=failed_removed,
        days_threshold=days,
        failed_days_threshold=failed_days,
    )
    return (old_removed, failed_removed)


def sweep(
    registry: JobRegistry,
    active_ids: Collection[str],
    days: int = DEFAULT_RETENTION_DAYS,
    failed_days: int = DEFAULT_RETENTION_DAYS,
    stale_after_ms: Optional[int] = None,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> SweepResult:
    """
    Reclaim orphaned jobs, then apply retention cleanup.

    Each step is retried with exponential backoff when the store reports a
    transient failure; any other error propagates.

    Args:
        registry: Registry to sweep
        active_ids: Ids the calling scheduler is currently tracking
        days: Retention for FINISHED and CANCELED jobs
        failed_days: Retention for FAILED jobs
        stale_after_ms: Orphan staleness threshold (default: registry setting)
        max_retries: Retries per step on TransientStoreError
        base_delay: Initial retry delay in seconds

    Returns:
        SweepResult with per-step counts

    Raises:
        TransientStoreError: If a step is still failing after max_retries retries
        StoreError: On any other store failure
    """
    def on_retry(attempt, exc, delay):
        registry.logger.warning(
            "Retrying maintenance step",
            attempt=attempt,
            delay=delay,
            error=str(exc),
        )

    retrying = exponential_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        exceptions=(TransientStoreError,),
        on_retry=on_retry,
        reraise=True,
    )

    now = registry.clock()
    result = SweepResult()
    result.orphans_canceled = retrying(registry.cancel_orphaned_jobs)(
        active_ids, stale_after_ms=stale_after_ms
    )
    # retried per step: each delete commits independently
    result.old_removed = retrying(registry.cleanup_old_jobs)(now - timedelta(days=days))
    result.failed_removed = retrying(registry.cleanup_failed_jobs)(
        now - timedelta(days=failed_days)
    )

    registry.logger.info(
        "Sweep complete",
        orphans_canceled=result.orphans_canceled,
        old_removed=result.old_removed,
        failed_removed=result.failed_removed,
    )
    return result
