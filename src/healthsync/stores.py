"""Concrete collaborators for the reconciliation engine.

    InMemorySessionSource — external sessions held in a list (device bridges
                            push batches into it; tests seed it directly)
    InMemoryHistoryStore  — history records held in a dict keyed by id
    PostgresHistoryStore  — one account's rows in the workout_history table
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any, Iterable, Mapping
from uuid import UUID

import asyncpg

from src.healthsync.base import (
    ExternalSessionRecord,
    ExternalSessionSource,
    HistoryRecord,
    HistoryStore,
    RecordSource,
    StoreReadError,
    WorkoutStatus,
)
from src.healthsync.session_matcher import align
from src.services import postgres

logger = logging.getLogger("fittoday.healthsync.stores")


class InMemorySessionSource(ExternalSessionSource):
    """External sessions kept in memory.

    ``fetch`` returns every session overlapping [start, end].
    """

    def __init__(self, sessions: Iterable[ExternalSessionRecord] = ()) -> None:
        self._sessions: list[ExternalSessionRecord] = list(sessions)

    async def fetch(self, start: datetime, end: datetime) -> list[ExternalSessionRecord]:
        found = []
        for s in self._sessions:
            s_start, s_end, lo, hi = align(s.start_time, s.end_time, start, end)
            if s_start <= hi and lo <= s_end:
                found.append(s)
        return found

    def replace(self, sessions: Iterable[ExternalSessionRecord]) -> None:
        """Swap the full session set (the external source rewrote its records)."""
        self._sessions = list(sessions)

    def add(self, session: ExternalSessionRecord) -> None:
        self._sessions.append(session)


class InMemoryHistoryStore(HistoryStore):
    """History records kept in a dict keyed by record id.

    Records are copied on the way in and out so callers can never mutate
    stored state behind the store's back.
    """

    def __init__(self, records: Iterable[HistoryRecord] = ()) -> None:
        self._records: dict[UUID, HistoryRecord] = {r.id: dataclasses.replace(r) for r in records}

    async def list_all(self) -> list[HistoryRecord]:
        """Return all records, newest first."""
        return sorted(
            (dataclasses.replace(r) for r in self._records.values()),
            key=lambda r: r.date,
            reverse=True,
        )

    async def upsert(self, record: HistoryRecord) -> None:
        self._records[record.id] = dataclasses.replace(record)

    def get(self, record_id: UUID) -> HistoryRecord | None:
        record = self._records.get(record_id)
        return dataclasses.replace(record) if record else None

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

#: Column order for workout_history reads and upserts.
HISTORY_COLUMNS = [
    "id",
    "account_id",
    "date",
    "plan_id",
    "title",
    "focus_category",
    "status",
    "duration_minutes",
    "calories_burned",
    "external_reference",
    "source",
]

_UPSERT_HISTORY = postgres.build_upsert_query(
    "workout_history",
    HISTORY_COLUMNS,
    conflict_columns=["id"],
    # account_id is fixed at insert time
    update_columns=[c for c in HISTORY_COLUMNS if c not in ("id", "account_id")],
)

_SELECT_HISTORY = (
    f"SELECT {', '.join(HISTORY_COLUMNS)} FROM workout_history "
    "WHERE account_id = $1 ORDER BY date DESC"
)


def record_from_row(row: Mapping[str, Any]) -> HistoryRecord:
    """Convert a workout_history row into a HistoryRecord."""
    return HistoryRecord(
        id=row["id"],
        date=row["date"],
        plan_id=row["plan_id"],
        title=row["title"],
        focus_category=row["focus_category"],
        status=WorkoutStatus(row["status"]),
        duration_minutes=row["duration_minutes"],
        calories_burned=row["calories_burned"],
        external_reference=row["external_reference"],
        source=RecordSource(row["source"]),
    )


def record_to_params(account_id: UUID, record: HistoryRecord) -> list[Any]:
    """Positional parameters for _UPSERT_HISTORY, in HISTORY_COLUMNS order."""
    return [
        record.id,
        account_id,
        record.date,
        record.plan_id,
        record.title,
        record.focus_category,
        record.status.value,
        record.duration_minutes,
        record.calories_burned,
        record.external_reference,
        record.source.value,
    ]


class PostgresHistoryStore(HistoryStore):
    """One account's workout history in Postgres.

    Expects a workout_history table with HISTORY_COLUMNS plus an
    ``updated_at`` timestamp column, keyed by ``id``.

    Args:
        account_id: Rows are read and written for this account only.
        pool:       asyncpg pool; defaults to the module pool from init_pool().
    """

    def __init__(self, account_id: UUID, pool: asyncpg.Pool | None = None) -> None:
        self._account_id = account_id
        self._pool = pool

    async def list_all(self) -> list[HistoryRecord]:
        try:
            rows = await postgres.fetch(_SELECT_HISTORY, self._account_id, pool=self._pool)
        except (asyncpg.PostgresError, OSError) as exc:
            raise StoreReadError(
                f"Could not list workout history for {self._account_id}: {exc}"
            ) from exc
        return [record_from_row(row) for row in rows]

    async def upsert(self, record: HistoryRecord) -> None:
        await postgres.execute(
            _UPSERT_HISTORY, *record_to_params(self._account_id, record), pool=self._pool
        )
        logger.debug("Upserted history record %s for %s", record.id, self._account_id)
