"""Tests for the in-memory and Postgres collaborators."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from src.healthsync.base import (
    IMPORTED_PLAN_ID,
    ExternalSessionRecord,
    HistoryRecord,
    RecordSource,
    StoreReadError,
    WorkoutStatus,
)
from src.healthsync.stores import (
    HISTORY_COLUMNS,
    InMemoryHistoryStore,
    InMemorySessionSource,
    PostgresHistoryStore,
    record_from_row,
    record_to_params,
)
from src.healthsync.tests.conftest import TEST_ACCOUNT_ID, make_record, make_session
from src.services import postgres

D = datetime(2026, 2, 23, 12, 0, 0)


class TestExternalSessionRecord:
    def test_duration_rounded_from_interval(self) -> None:
        s = ExternalSessionRecord.from_interval(
            "hk-1", D, D + timedelta(minutes=44, seconds=31), calories_burned=312.6
        )
        assert s.duration_minutes == 45
        assert s.calories_burned == 313

    def test_half_minute_rounds_up(self) -> None:
        s = ExternalSessionRecord.from_interval(
            "hk-3", D, D + timedelta(seconds=150), calories_burned=250.5
        )
        assert s.duration_minutes == 3
        assert s.calories_burned == 251

    def test_negative_interval_floors_at_zero(self) -> None:
        s = ExternalSessionRecord.from_interval("hk-2", D, D - timedelta(minutes=5))
        assert s.duration_minutes == 0
        assert s.calories_burned is None


class TestHistoryRecordInvariants:
    def test_imported_requires_placeholder_plan(self) -> None:
        with pytest.raises(ValueError, match="placeholder plan"):
            HistoryRecord(
                date=D, plan_id=uuid4(), title="x", focus_category="y",
                source=RecordSource.IMPORTED,
            )

    def test_reference_requires_completed(self) -> None:
        with pytest.raises(ValueError, match="only completed"):
            make_record(D, external_reference="hk-1", status=WorkoutStatus.SKIPPED)

    def test_significance(self) -> None:
        assert make_record(D, duration=30).is_significant(30)
        assert not make_record(D, duration=29).is_significant(30)
        assert not make_record(D, duration=None).is_significant(30)


class TestInMemorySessionSource:
    @pytest.mark.asyncio
    async def test_returns_overlapping_sessions(self) -> None:
        inside = make_session(D, duration=30)
        straddling = make_session(D - timedelta(days=1, minutes=-10), duration=30)
        outside = make_session(D - timedelta(days=3), duration=30)
        source = InMemorySessionSource([inside, straddling, outside])

        found = await source.fetch(D - timedelta(days=1), D)

        assert inside in found
        assert straddling in found
        assert outside not in found


class TestInMemoryHistoryStore:
    @pytest.mark.asyncio
    async def test_list_newest_first(self) -> None:
        older = make_record(D - timedelta(days=1))
        newer = make_record(D)
        store = InMemoryHistoryStore([older, newer])
        assert [r.id for r in await store.list_all()] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self) -> None:
        record = make_record(D, duration=20)
        store = InMemoryHistoryStore([record])
        record.duration_minutes = 25
        assert store.get(record.id).duration_minutes == 20
        await store.upsert(record)
        assert store.get(record.id).duration_minutes == 25
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self) -> None:
        record = make_record(D, duration=20)
        store = InMemoryHistoryStore([record])
        [listed] = await store.list_all()
        listed.duration_minutes = 99
        assert store.get(record.id).duration_minutes == 20


class TestPostgresMapping:
    def test_row_round_trip(self) -> None:
        record = HistoryRecord(
            date=D, plan_id=IMPORTED_PLAN_ID, title="Imported workout",
            focus_category="external", duration_minutes=40, calories_burned=300,
            external_reference="hk-1", source=RecordSource.IMPORTED,
        )
        params = record_to_params(TEST_ACCOUNT_ID, record)
        row = dict(zip(HISTORY_COLUMNS, params))

        assert row["account_id"] == TEST_ACCOUNT_ID
        assert row["status"] == "completed"
        assert row["source"] == "imported"
        assert record_from_row(row) == record


class TestPostgresHistoryStore:
    @pytest.mark.asyncio
    async def test_list_all_queries_account(self, monkeypatch) -> None:
        record = make_record(D, duration=40)
        row = dict(zip(HISTORY_COLUMNS, record_to_params(TEST_ACCOUNT_ID, record)))
        fetch = AsyncMock(return_value=[row])
        monkeypatch.setattr(postgres, "fetch", fetch)

        records = await PostgresHistoryStore(TEST_ACCOUNT_ID).list_all()

        assert records == [record]
        query, account_id = fetch.await_args.args
        assert "FROM workout_history" in query
        assert account_id == TEST_ACCOUNT_ID

    @pytest.mark.asyncio
    async def test_list_all_wraps_database_errors(self, monkeypatch) -> None:
        monkeypatch.setattr(
            postgres, "fetch", AsyncMock(side_effect=ConnectionRefusedError("db down"))
        )
        with pytest.raises(StoreReadError):
            await PostgresHistoryStore(TEST_ACCOUNT_ID).list_all()

    @pytest.mark.asyncio
    async def test_upsert_uses_on_conflict(self, monkeypatch) -> None:
        execute = AsyncMock(return_value="INSERT 0 1")
        monkeypatch.setattr(postgres, "execute", execute)
        record = make_record(D, duration=40)

        await PostgresHistoryStore(TEST_ACCOUNT_ID).upsert(record)

        query, *params = execute.await_args.args
        assert query.startswith("INSERT INTO workout_history")
        assert "ON CONFLICT (id) DO UPDATE" in query
        assert "account_id = EXCLUDED.account_id" not in query
        assert params == record_to_params(TEST_ACCOUNT_ID, record)
