"""Shared test fixtures for M.A.R.C.H. phase engine tests."""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from march.domains.phase.domain_logic.phase_models import (  # noqa: E402
    BaselineStats,
    BodySummary,
    CycleSummary,
    GiSummary,
    TrainingSummary,
    WeeklyAggregate,
)

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("MARCH_CONFIG_PATH", "")
    monkeypatch.setenv("DB_PATH", ":memory:")


# ---------------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------------

WEEK_START = "2026-01-05"  # a Monday

BASELINE = BaselineStats(
    hrv_median=55.0,
    rhr_baseline=65.0,
    volume_load_baseline=2000.0,
    strength_baseline=100.0,
)


def make_aggregate(**overrides) -> WeeklyAggregate:
    """A WeeklyAggregate with no signals and a full week of data days."""
    defaults = dict(
        client_id="client-1",
        week_start_iso=WEEK_START,
        week_end_iso="2026-01-11",
        data_days=7,
    )
    defaults.update(overrides)
    return WeeklyAggregate(**defaults)


def mitochondria_week() -> WeeklyAggregate:
    return make_aggregate(
        hrv_avg=38.0, rhr_avg=76.0, sleep_avg=6.2, energy_avg=2.0, steps_avg=4200.0, stress_avg=3.0,
    )


def absorption_week() -> WeeklyAggregate:
    return make_aggregate(
        hrv_avg=56.0, rhr_avg=64.0, sleep_avg=7.2, energy_avg=3.5, steps_avg=8000.0, stress_avg=2.5,
        gi=GiSummary(
            bloating_avg=2.5, stool_form_avg=2.0, bowel_freq_avg=0.5,
            food_reactivity_avg=1.2, nausea_days=2,
        ),
    )


def resilience_week() -> WeeklyAggregate:
    return make_aggregate(
        hrv_avg=47.0, rhr_avg=68.0, sleep_avg=6.8, energy_avg=3.0, steps_avg=7000.0, stress_avg=4.2,
        training=TrainingSummary(strength_sessions=3, rpe_avg=8.0, volume_load_sum=2800.0),
    )


def cyclical_week() -> WeeklyAggregate:
    return make_aggregate(
        hrv_avg=55.0, rhr_avg=65.0, sleep_avg=7.0, energy_avg=3.0, stress_avg=2.5,
        gi=GiSummary(bloating_avg=1.0),
        cycle=CycleSummary(menstrual_days=3, pms_severity_avg=2.0),
    )


def hypertrophy_week() -> WeeklyAggregate:
    return make_aggregate(
        hrv_avg=60.0, rhr_avg=60.0, sleep_avg=7.8, energy_avg=4.0, steps_avg=9000.0, stress_avg=2.0,
        training=TrainingSummary(strength_sessions=4, rpe_avg=7.5, volume_load_sum=2500.0),
        body=BodySummary(strength_trend_pct=2.5),
    )


def with_gi(aggregate: WeeklyAggregate, **fields) -> WeeklyAggregate:
    return replace(aggregate, gi=replace(aggregate.gi, **fields))


class FixedClock:
    """Callable clock returning a settable aware datetime."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 1, 8, 12, 0, tzinfo=timezone.utc)  # Thursday

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def baseline() -> BaselineStats:
    return BASELINE


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def march_db():
    """Create an in-memory MarchDatabase for testing."""
    from march.core.storage.database import MarchDatabase

    db = MarchDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from march.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def march_repository(march_db, field_encryptor):
    """Create a MarchRepository backed by in-memory SQLite."""
    from march.core.storage.repository import MarchRepository

    return MarchRepository(march_db, field_encryptor)


@pytest.fixture
def repository_source(march_repository):
    from march.domains.phase.connectors.repository_source import RepositorySampleSource

    return RepositorySampleSource(march_repository)


@pytest.fixture
def audit_logger(march_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from march.core.audit.logger import AuditLogger

    return AuditLogger(march_db)
