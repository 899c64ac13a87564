"""Deduplication logic for importing external workout sessions.

Prevents creating a second history record for a session the app already
knows about.  Two independent checks, either of which marks a duplicate:

    identity  — the external id is already some record's external_reference
    proximity — a record on the same calendar day (by end_time) has a
                duration within N minutes; catches the external source
                re-issuing one logical session under a new id
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, tzinfo
from typing import Iterable

from src.healthsync.base import ExternalSessionRecord, HistoryRecord
from src.healthsync.config_loader import ReconcileConfig, get_reconcile_config
from src.healthsync.session_matcher import local_day

logger = logging.getLogger("fittoday.healthsync.sync.dedup")


def known_external_ids(records: Iterable[HistoryRecord]) -> set[str]:
    """Return every non-null external_reference among the records."""
    return {r.external_reference for r in records if r.external_reference is not None}


def is_proximity_duplicate(
    session: ExternalSessionRecord,
    records: Iterable[HistoryRecord],
    max_duration_diff_minutes: int,
    tz: tzinfo | None,
) -> bool:
    """True if a same-day record has a duration close to the session's.

    Records with unknown duration never count as proximity duplicates.
    """
    day = local_day(session.end_time, tz)
    for record in records:
        if record.duration_minutes is None:
            continue
        if local_day(record.date, tz) != day:
            continue
        if abs(record.duration_minutes - session.duration_minutes) <= max_duration_diff_minutes:
            return True
    return False


class Deduplicator:
    """Decide whether external sessions are already represented internally.

    Built from a snapshot of history records.  ``register()`` folds freshly
    imported records into the snapshot so later sessions in the same batch
    are checked against them too.

    Usage::

        dedup = Deduplicator(history)
        for session in external_sessions:
            if dedup.is_duplicate(session):
                continue
            record = build_record(session)
            await store.upsert(record)
            dedup.register(record)
    """

    def __init__(
        self,
        records: Iterable[HistoryRecord],
        config: ReconcileConfig | None = None,
    ) -> None:
        cfg = config or get_reconcile_config()
        self._max_diff = cfg.dedup.proximity_duration_minutes
        self._tz = cfg.matching.tz
        self._ids: set[str] = set()
        self._by_day: dict[date, list[HistoryRecord]] = defaultdict(list)
        for record in records:
            self.register(record)

    def register(self, record: HistoryRecord) -> None:
        """Add a record to the known set."""
        if record.external_reference is not None:
            self._ids.add(record.external_reference)
        self._by_day[local_day(record.date, self._tz)].append(record)

    def is_known_id(self, session: ExternalSessionRecord) -> bool:
        return session.external_id in self._ids

    def is_proximity_duplicate(self, session: ExternalSessionRecord) -> bool:
        same_day = self._by_day.get(local_day(session.end_time, self._tz), [])
        return is_proximity_duplicate(session, same_day, self._max_diff, self._tz)

    def is_duplicate(self, session: ExternalSessionRecord) -> bool:
        """Return True if either the identity or proximity check matches."""
        if self.is_known_id(session):
            logger.debug("Skipping %s: already referenced", session.external_id)
            return True
        if self.is_proximity_duplicate(session):
            logger.debug("Skipping %s: same-day record of similar duration", session.external_id)
            return True
        return False

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_day.values())
