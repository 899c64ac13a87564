"""Shared fixtures and builders for reconciliation tests."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID, uuid4

import pytest

from src.healthsync.base import (
    AggregationSink,
    ExternalSessionRecord,
    HistoryRecord,
    RecordSource,
    WorkoutStatus,
)
from src.healthsync.config_loader import ReconcileConfig, load_reconcile_config
from src.healthsync.stores import InMemoryHistoryStore, InMemorySessionSource
from src.healthsync.sync.reconciler import ReconciliationEngine

# Fixed "now" for every engine under test (local, naive)
NOW = datetime(2026, 2, 23, 18, 0, 0)
TEST_PLAN_ID = UUID("12345678-1234-5678-1234-567812345678")
TEST_ACCOUNT_ID = UUID("87654321-4321-8765-4321-876543218765")


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_record(
    date: datetime,
    duration: int | None = None,
    calories: int | None = None,
    external_reference: str | None = None,
    status: WorkoutStatus = WorkoutStatus.COMPLETED,
    title: str = "Upper body strength",
) -> HistoryRecord:
    """An in-app history record."""
    return HistoryRecord(
        date=date,
        plan_id=TEST_PLAN_ID,
        title=title,
        focus_category="upper",
        status=status,
        duration_minutes=duration,
        calories_burned=calories,
        external_reference=external_reference,
        source=RecordSource.APP,
    )


def make_session(
    end: datetime,
    duration: int,
    calories: int | None = 250,
    external_id: str | None = None,
) -> ExternalSessionRecord:
    """An external session ending at ``end`` and lasting ``duration`` minutes."""
    return ExternalSessionRecord(
        external_id=external_id or f"hk-{uuid4()}",
        start_time=end - timedelta(minutes=duration),
        end_time=end,
        duration_minutes=duration,
        calories_burned=calories,
    )


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class RecordingSink(AggregationSink):
    """Aggregation sink that remembers every notification."""

    def __init__(self) -> None:
        self.notified: list[HistoryRecord] = []

    async def notify(self, record: HistoryRecord) -> None:
        self.notified.append(record)


class FlakyHistoryStore(InMemoryHistoryStore):
    """In-memory store whose upsert fails for selected record ids."""

    def __init__(self, records=(), fail_ids: set[UUID] | None = None) -> None:
        super().__init__(records)
        self.fail_ids: set[UUID] = fail_ids or set()
        self.fail_external_refs: set[str] = set()

    async def upsert(self, record: HistoryRecord) -> None:
        if record.id in self.fail_ids or record.external_reference in self.fail_external_refs:
            raise ConnectionError(f"write rejected for {record.id}")
        await super().upsert(record)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def reconcile_config() -> ReconcileConfig:
    """Load the bundled reconcile config."""
    return load_reconcile_config()


@pytest.fixture
def source() -> InMemorySessionSource:
    return InMemorySessionSource()


@pytest.fixture
def store() -> FlakyHistoryStore:
    return FlakyHistoryStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def quiet_logger() -> logging.Logger:
    log = logging.getLogger("fittoday.healthsync.tests")
    log.addHandler(logging.NullHandler())
    return log


@pytest.fixture
def engine(
    source: InMemorySessionSource,
    store: FlakyHistoryStore,
    sink: RecordingSink,
    reconcile_config: ReconcileConfig,
    quiet_logger: logging.Logger,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        source=source,
        store=store,
        sink=sink,
        config=reconcile_config,
        logger=quiet_logger,
        clock=lambda: NOW,
    )
