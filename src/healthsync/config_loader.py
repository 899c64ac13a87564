"""Load, validate, and hot-reload the reconciliation configuration.

The config lives in ``reconcile_config.yaml`` alongside this module.  It is
loaded once and cached.  Call ``reload_reconcile_config()`` to re-read from
disk after an update; no restart required.

Usage::

    from src.healthsync.config_loader import get_reconcile_config

    config = get_reconcile_config()
    config.matching.max_time_delta          # timedelta(hours=3)
    config.aggregation.significant_duration_minutes   # 30
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from src.healthsync.base import IMPORTED_FOCUS, IMPORTED_TITLE

logger = logging.getLogger("fittoday.healthsync.config")

_CONFIG_PATH = Path(__file__).parent / "reconcile_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class MatchingConfig:
    """Temporal / duration matching between history and external sessions."""

    max_time_delta_hours: float = 3.0
    duration_tolerance_ratio: float = 0.20
    # None: the host's local zone
    calendar_timezone: str | None = None

    @property
    def max_time_delta(self) -> timedelta:
        return timedelta(hours=self.max_time_delta_hours)

    @property
    def tz(self) -> tzinfo | None:
        if self.calendar_timezone is None:
            return None
        return ZoneInfo(self.calendar_timezone)


@dataclass
class DedupConfig:
    proximity_duration_minutes: int = 5


@dataclass
class AggregationConfig:
    significant_duration_minutes: int = 30


@dataclass
class WindowConfig:
    """Default trailing windows (days) per operation."""

    enrich_days: int = 30
    import_days: int = 7
    cleanup_days: int = 30


@dataclass
class ImportedRecordConfig:
    title: str = IMPORTED_TITLE
    focus_category: str = IMPORTED_FOCUS


@dataclass
class ReconcileConfig:
    """Complete, validated reconciliation configuration.

    Attributes:
        version:         Config schema version string.
        matching:        Session matcher thresholds.
        dedup:           Deduplicator thresholds.
        aggregation:     Significance threshold for the aggregation sink.
        windows:         Default windows per operation.
        imported_record: Placeholder display values for imported records.
    """

    version: str = "1.0"
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    windows: WindowConfig = field(default_factory=WindowConfig)
    imported_record: ImportedRecordConfig = field(default_factory=ImportedRecordConfig)
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when reconcile_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Reconcile config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> ReconcileConfig:
    """Validate the raw YAML dict and construct a ReconcileConfig.

    Missing sections fall back to defaults; present values must be
    well-typed and in range.

    Raises:
        ConfigValidationError: Listing every problem found.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, name: str, default: float, cast=float):
        val = section.get(key, default)
        try:
            return cast(val)
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {val!r}")
            return default

    def _section(name: str) -> dict:
        val = raw.get(name) or {}
        if not isinstance(val, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return val

    version = str(raw.get("version", "1.0"))

    # ── Matching ──
    m_raw = _section("matching")
    tz_name = m_raw.get("calendar_timezone")
    matching = MatchingConfig(
        max_time_delta_hours=_number(m_raw, "max_time_delta_hours", "matching", 3.0),
        duration_tolerance_ratio=_number(m_raw, "duration_tolerance_ratio", "matching", 0.20),
        calendar_timezone=str(tz_name) if tz_name is not None else None,
    )
    if matching.max_time_delta_hours <= 0:
        errors.append("matching.max_time_delta_hours must be > 0")
    if not (0.0 <= matching.duration_tolerance_ratio <= 1.0):
        errors.append(
            f"matching.duration_tolerance_ratio = {matching.duration_tolerance_ratio} "
            "is out of range [0.0, 1.0]"
        )
    if matching.calendar_timezone is not None:
        try:
            ZoneInfo(matching.calendar_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"matching.calendar_timezone {matching.calendar_timezone!r} is unknown")

    # ── Dedup ──
    d_raw = _section("dedup")
    dedup = DedupConfig(
        proximity_duration_minutes=_number(d_raw, "proximity_duration_minutes", "dedup", 5, int),
    )
    if dedup.proximity_duration_minutes < 0:
        errors.append("dedup.proximity_duration_minutes must be >= 0")

    # ── Aggregation ──
    a_raw = _section("aggregation")
    aggregation = AggregationConfig(
        significant_duration_minutes=_number(
            a_raw, "significant_duration_minutes", "aggregation", 30, int
        ),
    )

    # ── Windows ──
    w_raw = _section("windows")
    windows = WindowConfig(
        enrich_days=_number(w_raw, "enrich_days", "windows", 30, int),
        import_days=_number(w_raw, "import_days", "windows", 7, int),
        cleanup_days=_number(w_raw, "cleanup_days", "windows", 30, int),
    )
    for key in ("enrich_days", "import_days", "cleanup_days"):
        if getattr(windows, key) < 1:
            errors.append(f"windows.{key} must be >= 1")

    # ── Imported record placeholders ──
    i_raw = _section("imported_record")
    imported_record = ImportedRecordConfig(
        title=str(i_raw.get("title", IMPORTED_TITLE)),
        focus_category=str(i_raw.get("focus_category", IMPORTED_FOCUS)),
    )

    if errors:
        raise ConfigValidationError(
            f"reconcile_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ReconcileConfig(
        version=version,
        matching=matching,
        dedup=dedup,
        aggregation=aggregation,
        windows=windows,
        imported_record=imported_record,
        _raw=raw,
    )


def load_reconcile_config(path: Path | None = None) -> ReconcileConfig:
    """Load and validate the reconcile config from disk.

    Args:
        path: Override path to YAML. Uses the bundled reconcile_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded reconcile config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: ReconcileConfig | None = None
_config_lock = threading.Lock()


def get_reconcile_config() -> ReconcileConfig:
    """Return the global ReconcileConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_reconcile_config()
    return _config


def reload_reconcile_config(path: Path | None = None) -> ReconcileConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_reconcile_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded reconcile config: %s → %s", old_version, new_config.version)
    return new_config
