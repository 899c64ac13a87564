"""FitToday health-history reconciliation.

Merges workout sessions recorded by an external health store into the app's
own workout history without ever duplicating a workout, and heals references
when the external store rewrites its records.

Subpackages:
    sync/  — Reconciliation engine, deduplication, per-account scheduler
    tests/ — pytest suite

Core modules:
    base            — Records, collaborator ABCs, errors
    config_loader   — Load/validate/hot-reload reconcile_config.yaml
    session_matcher — Pick the external session behind a history record
    stores          — In-memory and Postgres collaborators
"""

from src.healthsync.base import (
    IMPORTED_PLAN_ID,
    AggregationSink,
    ExternalSessionRecord,
    ExternalSessionSource,
    HistoryRecord,
    HistoryStore,
    NullAggregationSink,
    RecordSource,
    ReconciliationError,
    SourceUnavailableError,
    StoreReadError,
    WorkoutStatus,
)
from src.healthsync.config_loader import ReconcileConfig, get_reconcile_config

__all__ = [
    "IMPORTED_PLAN_ID",
    "ExternalSessionRecord",
    "HistoryRecord",
    "WorkoutStatus",
    "RecordSource",
    "ExternalSessionSource",
    "HistoryStore",
    "AggregationSink",
    "NullAggregationSink",
    "ReconciliationError",
    "SourceUnavailableError",
    "StoreReadError",
    "ReconcileConfig",
    "get_reconcile_config",
]
