"""Reconcile external health-store workouts into the app's workout history.

Three operations, each a single sequential pass over a trailing window:

    enrich_existing — copy duration / calories / id from a matched external
                      session onto completed history records
    import_missing  — create history records for external sessions the app
                      has never seen
    cleanup_stale   — clear external references that no longer resolve, so
                      the record can be re-matched on the next pass

Every pass fetches its inputs up front (source + store, concurrently), then
decides and upserts record by record.  A failed upsert is logged and skipped;
a failed fetch aborts the whole operation.  Records are never deleted.

One engine instance is a single logical writer: all operations run under an
``asyncio.Lock``.  Two engines pointed at the same account are NOT
coordinated; route such callers through ``SyncScheduler``.

Usage::

    engine = ReconciliationEngine(source=health_source, store=history_store)
    report = await engine.run_full_sync()
    logger.info("Reconciled: %s", report)
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from src.healthsync.base import (
    IMPORTED_PLAN_ID,
    AggregationSink,
    ExternalSessionRecord,
    ExternalSessionSource,
    HistoryRecord,
    HistoryStore,
    NullAggregationSink,
    RecordSource,
    WorkoutStatus,
)
from src.healthsync.config_loader import ReconcileConfig, get_reconcile_config
from src.healthsync.session_matcher import SessionMatcher, align
from src.healthsync.sync.dedup import Deduplicator, known_external_ids

_module_logger = logging.getLogger("fittoday.healthsync.sync.reconciler")


def _local_now() -> datetime:
    """Current time, aware, in the host's local zone."""
    return datetime.now().astimezone()


def _in_window(moment: datetime, start: datetime, end: datetime) -> bool:
    moment, start, end = align(moment, start, end)
    return start <= moment <= end


@dataclass
class ReconciliationReport:
    """Outcome of a full sync pass.

    Attributes:
        cleaned:     References cleared by cleanup_stale.
        enriched:    Records updated by enrich_existing.
        imported:    Records created by import_missing.
        status:      'success' or 'error'.
        error:       Error message if status == 'error'.
        started_at:  When the pass began.
        finished_at: When the pass ended (successfully or not).
    """

    cleaned: int = 0
    enriched: int = 0
    imported: int = 0
    status: str = "success"
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def total_changes(self) -> int:
        return self.cleaned + self.enriched + self.imported


class ReconciliationEngine:
    """Merge an external session source into a history store.

    Args:
        source: External session source.
        store:  The app's history store.
        sink:   Optional downstream counters; defaults to a no-op sink.
        config: Thresholds; defaults to the global reconcile config.
        logger: Logger for progress and per-record failures.
        clock:  Returns "now"; aware host-local time by default.  Naive
                history timestamps are read as host-local when compared
                against an aware clock.
    """

    def __init__(
        self,
        source: ExternalSessionSource,
        store: HistoryStore,
        sink: AggregationSink | None = None,
        config: ReconcileConfig | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self._source = source
        self._store = store
        self._sink = sink or NullAggregationSink()
        self._config = config or get_reconcile_config()
        self._log = logger or _module_logger
        self._clock = clock
        self._matcher = SessionMatcher(self._config)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def enrich_existing(self, window_days: int | None = None) -> int:
        """Attach external metrics to unmatched completed records.

        Returns:
            Number of records successfully updated.
        """
        async with self._lock:
            return await self._enrich_existing(window_days)

    async def import_missing(self, window_days: int | None = None) -> int:
        """Create history records for external sessions not yet represented.

        Returns:
            Number of records successfully imported.
        """
        async with self._lock:
            return await self._import_missing(window_days)

    async def cleanup_stale(self, window_days: int | None = None) -> int:
        """Clear external references that no longer resolve in the source.

        Returns:
            Number of references cleared.
        """
        async with self._lock:
            return await self._cleanup_stale(window_days)

    async def run_full_sync(self) -> ReconciliationReport:
        """Run cleanup, enrichment and import back to back, with default windows.

        Cleanup runs first so freed records are re-matched in the same pass;
        enrichment runs before import so in-app records claim their external
        session before it could be imported as a separate workout.  A failing
        step stops the pass; counts from earlier steps are kept.
        """
        report = ReconciliationReport(started_at=self._clock())
        async with self._lock:
            try:
                report.cleaned = await self._cleanup_stale(None)
                report.enriched = await self._enrich_existing(None)
                report.imported = await self._import_missing(None)
            except Exception as exc:
                report.status = "error"
                report.error = str(exc) or type(exc).__name__
                self._log.error("Full sync failed: %s", report.error)
        report.finished_at = self._clock()
        self._log.info(
            "Full sync %s: cleaned=%d enriched=%d imported=%d",
            report.status, report.cleaned, report.enriched, report.imported,
        )
        return report

    # ------------------------------------------------------------------
    # Passes (caller holds the lock)
    # ------------------------------------------------------------------

    async def _enrich_existing(self, window_days: int | None) -> int:
        days = window_days if window_days is not None else self._config.windows.enrich_days
        start, end = self._window(days)
        sessions, history = await self._fetch_inputs(start, end)

        # An external session may back at most one record
        taken = known_external_ids(history)
        available = [s for s in sessions if s.external_id not in taken]

        candidates = [
            r for r in history
            if r.status == WorkoutStatus.COMPLETED
            and _in_window(r.date, start, end)
            and r.external_reference is None
        ]

        updated_count = 0
        for record in candidates:
            match = self._matcher.match(record, available)
            if match is None:
                continue

            updated = dataclasses.replace(
                record,
                duration_minutes=match.duration_minutes,
                calories_burned=match.calories_burned,
                external_reference=match.external_id,
            )
            if not await self._save(updated):
                continue

            available = [s for s in available if s.external_id != match.external_id]
            updated_count += 1
            await self._notify_if_significant(updated)

        self._log.info("Enrich complete: %d records updated", updated_count)
        return updated_count

    async def _import_missing(self, window_days: int | None) -> int:
        days = window_days if window_days is not None else self._config.windows.import_days
        start, end = self._window(days)
        sessions, history = await self._fetch_inputs(start, end)

        dedup = Deduplicator(history, self._config)

        imported_count = 0
        for session in sessions:
            if dedup.is_duplicate(session):
                continue

            record = self._build_imported(session)
            if not await self._save(record):
                continue

            dedup.register(record)
            imported_count += 1
            await self._notify_if_significant(record)

        self._log.info(
            "Import complete: %d of %d external sessions imported",
            imported_count, len(sessions),
        )
        return imported_count

    async def _cleanup_stale(self, window_days: int | None) -> int:
        days = window_days if window_days is not None else self._config.windows.cleanup_days
        start, end = self._window(days)
        sessions, history = await self._fetch_inputs(start, end)

        valid_ids = {s.external_id for s in sessions}
        stale = [
            r for r in history
            if r.external_reference is not None
            and _in_window(r.date, start, end)
            and r.external_reference not in valid_ids
        ]

        cleaned_count = 0
        for record in stale:
            self._log.debug(
                "Record %s references missing external session %s",
                record.id, record.external_reference,
            )
            if await self._save(dataclasses.replace(record, external_reference=None)):
                cleaned_count += 1

        self._log.info("Cleanup complete: %d stale references cleared", cleaned_count)
        return cleaned_count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _window(self, window_days: int) -> tuple[datetime, datetime]:
        now = self._clock()
        return now - timedelta(days=max(1, int(window_days))), now

    async def _fetch_inputs(
        self, start: datetime, end: datetime
    ) -> tuple[list[ExternalSessionRecord], list[HistoryRecord]]:
        """Fetch external sessions and all history records concurrently.

        Any failure propagates; nothing has been written at this point.
        """
        sessions, history = await asyncio.gather(
            self._source.fetch(start, end),
            self._store.list_all(),
        )
        self._log.debug(
            "Fetched %d external sessions and %d history records for %s → %s",
            len(sessions), len(history), start, end,
        )
        return list(sessions), list(history)

    def _build_imported(self, session: ExternalSessionRecord) -> HistoryRecord:
        placeholders = self._config.imported_record
        return HistoryRecord(
            date=session.end_time,
            plan_id=IMPORTED_PLAN_ID,
            title=placeholders.title,
            focus_category=placeholders.focus_category,
            status=WorkoutStatus.COMPLETED,
            duration_minutes=session.duration_minutes,
            calories_burned=session.calories_burned,
            external_reference=session.external_id,
            source=RecordSource.IMPORTED,
        )

    async def _save(self, record: HistoryRecord) -> bool:
        """Upsert one record; log and report False on failure."""
        try:
            await self._store.upsert(record)
        except Exception as exc:
            self._log.warning("Failed to save history record %s: %s", record.id, exc)
            return False
        return True

    async def _notify_if_significant(self, record: HistoryRecord) -> None:
        threshold = self._config.aggregation.significant_duration_minutes
        if not record.is_significant(threshold):
            return
        try:
            await self._sink.notify(record)
        except Exception as exc:
            self._log.warning("Aggregation sink failed for record %s: %s", record.id, exc)
