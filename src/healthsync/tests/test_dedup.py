"""Tests for deduplication: identity and same-day proximity checks."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from src.healthsync.config_loader import ReconcileConfig, _validate_and_build
from src.healthsync.sync.dedup import (
    Deduplicator,
    is_proximity_duplicate,
    known_external_ids,
)
from src.healthsync.tests.conftest import make_record, make_session

D = datetime(2026, 2, 20, 9, 0, 0)


class TestKnownExternalIds:
    def test_collects_non_null_references(self) -> None:
        records = [
            make_record(D, external_reference="hk-1"),
            make_record(D, external_reference=None),
            make_record(D, external_reference="hk-2"),
        ]
        assert known_external_ids(records) == {"hk-1", "hk-2"}


class TestProximityHelper:
    def test_within_five_minutes_same_day(self) -> None:
        records = [make_record(D, duration=40)]
        session = make_session(D + timedelta(hours=6), duration=45)
        assert is_proximity_duplicate(session, records, 5, timezone.utc)

    def test_six_minutes_apart_is_not_duplicate(self) -> None:
        records = [make_record(D, duration=40)]
        session = make_session(D + timedelta(hours=6), duration=46)
        assert not is_proximity_duplicate(session, records, 5, timezone.utc)

    def test_different_day_is_not_duplicate(self) -> None:
        records = [make_record(D, duration=40)]
        session = make_session(D + timedelta(days=1), duration=40)
        assert not is_proximity_duplicate(session, records, 5, timezone.utc)

    def test_record_without_duration_never_matches(self) -> None:
        records = [make_record(D, duration=None)]
        session = make_session(D, duration=40)
        assert not is_proximity_duplicate(session, records, 5, timezone.utc)


class TestDeduplicator:
    def test_identity_wins_regardless_of_similarity(
        self, reconcile_config: ReconcileConfig
    ) -> None:
        # Different day, wildly different duration: still a duplicate by id
        records = [make_record(D, duration=20, external_reference="hk-1")]
        dedup = Deduplicator(records, reconcile_config)
        session = make_session(D + timedelta(days=3), duration=120, external_id="hk-1")
        assert dedup.is_known_id(session)
        assert dedup.is_duplicate(session)

    def test_reissued_session_caught_by_proximity(
        self, reconcile_config: ReconcileConfig
    ) -> None:
        records = [make_record(D, duration=40, external_reference="hk-old")]
        dedup = Deduplicator(records, reconcile_config)
        reissued = make_session(D + timedelta(minutes=2), duration=42, external_id="hk-new")
        assert not dedup.is_known_id(reissued)
        assert dedup.is_duplicate(reissued)

    def test_unrelated_session_is_not_duplicate(self, reconcile_config: ReconcileConfig) -> None:
        dedup = Deduplicator([make_record(D, duration=40)], reconcile_config)
        assert not dedup.is_duplicate(make_session(D, duration=90))

    def test_register_extends_known_set(self, reconcile_config: ReconcileConfig) -> None:
        dedup = Deduplicator([], reconcile_config)
        session = make_session(D, duration=40, external_id="hk-9")
        assert not dedup.is_duplicate(session)
        dedup.register(make_record(D, duration=40, external_reference="hk-9"))
        assert dedup.is_duplicate(session)
        assert len(dedup) == 1


    def test_proximity_uses_configured_calendar_zone(self) -> None:
        # 21:30 record and a 19:30-20:30 re-issue, both on the 23rd in UTC-3
        record_time = datetime(2026, 2, 24, 0, 30, tzinfo=timezone.utc)
        session = make_session(
            datetime(2026, 2, 23, 23, 30, tzinfo=timezone.utc), duration=62, external_id="hk-new"
        )
        records = [make_record(record_time, duration=60, external_reference="hk-old")]

        local = _validate_and_build({"matching": {"calendar_timezone": "America/Sao_Paulo"}})
        utc = _validate_and_build({"matching": {"calendar_timezone": "UTC"}})

        assert local.matching.tz == ZoneInfo("America/Sao_Paulo")
        assert Deduplicator(records, local).is_duplicate(session)
        assert not Deduplicator(records, utc).is_duplicate(session)
