"""Background sync scheduler for health-history reconciliation.

Runs full reconciliation passes for many accounts:
1. Skip accounts synced more recently than the minimum interval
2. Run jobs for different accounts concurrently (bounded)
3. Serialize jobs for the same account behind a per-account lock
4. Collect one SyncResult per job; a failed job never sinks the batch

The per-account lock closes the double-import race: two triggers for one
account (app launch + pull-to-refresh) would otherwise both see the same
external session as "not yet imported" and both import it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from src.config import Settings, get_settings
from src.healthsync.session_matcher import align
from src.healthsync.sync.reconciler import ReconciliationEngine, ReconciliationReport

logger = logging.getLogger("fittoday.healthsync.sync.scheduler")


@dataclass
class SyncJob:
    """A scheduled reconciliation pass for one account.

    Attributes:
        account_id:   Account whose history is reconciled.
        engine:       Engine wired to the account's source and store.
        last_sync_at: When the account last completed a pass (None = never).
        priority:     Lower = higher priority. 1–10.
        force:        Run even if the minimum interval has not elapsed.
        created_at:   When the job was created.
    """

    account_id: UUID
    engine: ReconciliationEngine
    last_sync_at: datetime | None = None
    priority: int = 5
    force: bool = False
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class SyncResult:
    """Result of a single sync job.

    Attributes:
        account_id: Account the job ran for.
        report:     Reconciliation counts, or None if the job was skipped.
        skipped:    True if the job did not run (interval not elapsed).
    """

    account_id: UUID
    report: ReconciliationReport | None = None
    skipped: bool = False

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return self.report.status if self.report else "error"


class SyncScheduler:
    """Queue and execute reconciliation jobs.

    Usage::

        scheduler = SyncScheduler()
        scheduler.enqueue(SyncJob(account_id=uid, engine=engine))
        results = await scheduler.run_all()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        max_concurrent: int | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._max_concurrent = max_concurrent or self._settings.max_concurrent_syncs
        self._queue: list[SyncJob] = []
        self._account_locks: dict[UUID, asyncio.Lock] = {}

    def enqueue(self, job: SyncJob) -> None:
        """Add a job to the queue; jobs are kept sorted by priority."""
        self._queue.append(job)
        self._queue.sort(key=lambda j: j.priority)
        logger.debug("Enqueued sync job: %s (priority=%d)", job.account_id, job.priority)

    def __len__(self) -> int:
        return len(self._queue)

    async def run_all(self) -> list[SyncResult]:
        """Execute all queued jobs and clear the queue.

        Returns:
            One SyncResult per queued job, in queue order.
        """
        if not self._queue:
            logger.debug("SyncScheduler: no jobs in queue")
            return []

        jobs = list(self._queue)
        self._queue.clear()
        logger.info("SyncScheduler: running %d jobs", len(jobs))

        semaphore = asyncio.Semaphore(self._max_concurrent)
        results = await asyncio.gather(*(self._run_job(job, semaphore) for job in jobs))

        logger.info(
            "SyncScheduler: %d jobs complete, %d errors, %d skipped",
            len(results),
            sum(1 for r in results if r.status == "error"),
            sum(1 for r in results if r.skipped),
        )
        return list(results)

    async def _run_job(self, job: SyncJob, semaphore: asyncio.Semaphore) -> SyncResult:
        if not job.force and not self.should_sync(job.last_sync_at):
            logger.debug("Skipping %s: synced at %s", job.account_id, job.last_sync_at)
            return SyncResult(account_id=job.account_id, skipped=True)

        lock = self._account_locks.setdefault(job.account_id, asyncio.Lock())
        # Account lock first: a queued same-account job must not hold a slot
        async with lock:
            async with semaphore:
                report = await job.engine.run_full_sync()
        return SyncResult(account_id=job.account_id, report=report)

    def should_sync(self, last_sync_at: datetime | None, now: datetime | None = None) -> bool:
        """Return True if an account is due for a pass.

        Args:
            last_sync_at: When the account last synced (None = never).
            now:          Reference time; defaults to datetime.now().
        """
        if last_sync_at is None:
            return True
        now, last_sync_at = align(now or datetime.now(), last_sync_at)
        elapsed = (now - last_sync_at).total_seconds()
        return elapsed >= self._settings.min_sync_interval_seconds
