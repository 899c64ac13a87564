"""Session matcher: pick the external session that corresponds to a history record.

Uses same-day filtering, an end-time proximity window and a duration tolerance
band, all configurable in reconcile_config.yaml.  The duration band stops a
short in-app workout from taking the stats of a long unrelated session that
merely happened nearby (20 min record vs. 90 min external session).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from src.healthsync.base import ExternalSessionRecord, HistoryRecord
from src.healthsync.config_loader import ReconcileConfig, get_reconcile_config

logger = logging.getLogger("fittoday.healthsync.session_matcher")


def local_day(moment: datetime, tz: tzinfo | None) -> date:
    """Return the calendar day of a timestamp.

    Naive datetimes are already local wall-clock time.  Aware ones are
    converted to ``tz`` first, or to the host's local zone when ``tz`` is None.
    """
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(tz).date()


def align(*moments: datetime) -> tuple[datetime, ...]:
    """Make a mix of naive and aware datetimes comparable.

    When awareness is mixed, naive values are read as host-local time and
    made aware.  Uniform input is returned unchanged.
    """
    if len({m.tzinfo is None for m in moments}) <= 1:
        return moments
    return tuple(m if m.tzinfo is not None else m.astimezone() for m in moments)


def _same_day_candidates(
    record: HistoryRecord, sessions: Iterable[ExternalSessionRecord], tz: tzinfo | None
) -> list[ExternalSessionRecord]:
    day = local_day(record.date, tz)
    return [
        s for s in sessions
        if local_day(s.start_time, tz) == day or local_day(s.end_time, tz) == day
    ]


def _within_duration_band(
    record_minutes: int, candidate_minutes: int, tolerance_ratio: float
) -> bool:
    """True if the candidate's duration is within ±ratio of the record's."""
    # Float slack so 45 min at 20% still admits exactly 54
    return abs(candidate_minutes - record_minutes) <= tolerance_ratio * record_minutes + 1e-9


def best_match(
    record: HistoryRecord,
    sessions: Iterable[ExternalSessionRecord],
    max_delta: timedelta,
    tolerance_ratio: float,
    tz: tzinfo | None,
) -> ExternalSessionRecord | None:
    """Select the single best external session for a history record.

    Algorithm:
        1. Keep sessions starting or ending on the record's calendar day.
        2. Drop sessions whose end is more than ``max_delta`` from the record.
        3. If the record's duration is known, drop sessions outside the
           ``tolerance_ratio`` duration band.
        4. Return the survivor closest in time; ties keep iteration order.

    Args:
        record:          A completed history record.
        sessions:        External sessions for the query window.
        max_delta:       Largest allowed |end_time - record.date|.
        tolerance_ratio: Allowed duration difference as a fraction of the
                         record's duration.
        tz:              Zone for calendar-day comparison of aware timestamps;
                         None means the host's local zone.

    Returns:
        The matching ExternalSessionRecord, or None.
    """
    candidates = _same_day_candidates(record, sessions, tz)
    if not candidates:
        return None

    best: ExternalSessionRecord | None = None
    best_delta: timedelta | None = None

    for candidate in candidates:
        end_time, record_time = align(candidate.end_time, record.date)
        delta = abs(end_time - record_time)
        if delta > max_delta:
            continue
        if record.duration_minutes is not None and not _within_duration_band(
            record.duration_minutes, candidate.duration_minutes, tolerance_ratio
        ):
            continue
        # Strict less-than keeps the first of equally close candidates
        if best_delta is None or delta < best_delta:
            best, best_delta = candidate, delta

    return best


class SessionMatcher:
    """Match history records to external sessions with configured thresholds.

    Usage::

        matcher = SessionMatcher()
        session = matcher.match(record, external_sessions)
    """

    def __init__(self, config: ReconcileConfig | None = None) -> None:
        self._config = config or get_reconcile_config()

    def match(
        self, record: HistoryRecord, sessions: Iterable[ExternalSessionRecord]
    ) -> ExternalSessionRecord | None:
        cfg = self._config.matching
        found = best_match(
            record,
            sessions,
            max_delta=cfg.max_time_delta,
            tolerance_ratio=cfg.duration_tolerance_ratio,
            tz=cfg.tz,
        )
        if found is not None:
            logger.debug(
                "SessionMatcher: record %s → external %s", record.id, found.external_id
            )
        return found
