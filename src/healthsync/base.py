"""Canonical data models and collaborator interfaces for history reconciliation.

The reconciliation engine only ever talks to the outside world through the
three interfaces defined here:

    ExternalSessionSource — workouts recorded by the external health store
    HistoryStore          — the app's own workout history
    AggregationSink       — downstream streak / challenge counters

Every concrete collaborator (in-memory, Postgres, device bridge) subclasses one
of these and exchanges the ExternalSessionRecord / HistoryRecord types.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

#: Plan id shared by every imported session. Never generate a fresh one per
#: import: the whole class of plan-less imports is queried by this value.
IMPORTED_PLAN_ID = UUID("00000000-0000-0000-0000-00000000beef")

#: Display placeholders for imported sessions.
IMPORTED_TITLE = "Imported workout"
IMPORTED_FOCUS = "external"


def _round_half_up(value: float) -> int:
    """Round to the nearest integer, ties away from zero (2.5 -> 3)."""
    return int(Decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ReconciliationError(Exception):
    """Base class for errors raised out of a reconciliation operation."""


class SourceUnavailableError(ReconciliationError):
    """The external session source could not be queried (network, auth)."""


class StoreReadError(ReconciliationError):
    """The history store could not list its records."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WorkoutStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


class RecordSource(str, Enum):
    """Provenance of a history record."""

    APP = "app"
    IMPORTED = "imported"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExternalSessionRecord:
    """A workout session as reported by the external health store.

    Read-only to this package: fetched fresh on every operation and never
    persisted or cached.

    Attributes:
        external_id:      Opaque id assigned by the external source.
        start_time:       Session start.
        end_time:         Session end.
        duration_minutes: Whole minutes, round((end - start) / 60), floor 0.
        calories_burned:  Active energy in kcal, if the source reported it.
    """

    external_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    calories_burned: int | None = None

    @classmethod
    def from_interval(
        cls,
        external_id: str,
        start_time: datetime,
        end_time: datetime,
        calories_burned: float | None = None,
    ) -> ExternalSessionRecord:
        """Build a record, deriving duration from the session bounds."""
        seconds = (end_time - start_time).total_seconds()
        minutes = max(0, _round_half_up(seconds / 60.0))
        return cls(
            external_id=external_id,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=minutes,
            calories_burned=(
                _round_half_up(calories_burned) if calories_burned is not None else None
            ),
        )


@dataclass
class HistoryRecord:
    """The app's durable record of one workout occurrence.

    Attributes:
        date:               Canonical timestamp (completion time).
        plan_id:            Workout definition followed; IMPORTED_PLAN_ID for imports.
        title:              Display title.
        focus_category:     Display focus (e.g. 'upper', 'cardio').
        status:             COMPLETED or SKIPPED.
        duration_minutes:   Session length, if known.
        calories_burned:    Active energy, if known.
        external_reference: external_id of the matched external session, or None.
        source:             APP for in-app completions, IMPORTED for external imports.
        id:                 Immutable record id.
    """

    date: datetime
    plan_id: UUID
    title: str
    focus_category: str
    status: WorkoutStatus = WorkoutStatus.COMPLETED
    duration_minutes: int | None = None
    calories_burned: int | None = None
    external_reference: str | None = None
    source: RecordSource = RecordSource.APP
    id: UUID = field(default_factory=uuid.uuid4)

    def __post_init__(self) -> None:
        if self.source == RecordSource.IMPORTED and self.plan_id != IMPORTED_PLAN_ID:
            raise ValueError(
                f"Imported record {self.id} must use the imported placeholder plan id"
            )
        if self.external_reference is not None and self.status != WorkoutStatus.COMPLETED:
            raise ValueError(
                f"Record {self.id} has status {self.status.value}; "
                "only completed records may carry an external reference"
            )

    @property
    def is_imported(self) -> bool:
        return self.source == RecordSource.IMPORTED

    def is_significant(self, threshold_minutes: int) -> bool:
        """True if the workout is long enough to count toward streaks."""
        return self.duration_minutes is not None and self.duration_minutes >= threshold_minutes


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class ExternalSessionSource(ABC):
    """Read access to workouts stored by the external health store.

    Authorization is the caller's concern; by the time the engine calls
    ``fetch`` the source is assumed usable.
    """

    @abstractmethod
    async def fetch(self, start: datetime, end: datetime) -> list[ExternalSessionRecord]:
        """Return every external session that occurred in [start, end].

        Raises:
            SourceUnavailableError: If the source could not be queried.
        """


class HistoryStore(ABC):
    """The app's workout history."""

    @abstractmethod
    async def list_all(self) -> list[HistoryRecord]:
        """Return every known history record.

        Raises:
            StoreReadError: If the store could not be read.
        """

    @abstractmethod
    async def upsert(self, record: HistoryRecord) -> None:
        """Insert the record, or replace the stored record with the same id."""


class AggregationSink(ABC):
    """Downstream counters (streaks, challenges) fed by significant workouts."""

    @abstractmethod
    async def notify(self, record: HistoryRecord) -> None:
        """Called once per newly reconciled significant workout."""


class NullAggregationSink(AggregationSink):
    """Default sink: does nothing."""

    async def notify(self, record: HistoryRecord) -> None:
        return None
