"""Shared fixtures and builders for reconciliation engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import UUID

import pytest

from src.reconciliation.base import (
    ConfidenceFactors,
    DataSource,
    Observation,
    ScoredObservation,
)
from src.reconciliation.config_loader import ReconciliationConfig, load_reconciliation_config
from src.reconciliation.confidence_scorer import ConfidenceScorer
from src.reconciliation.conflict_resolver import ConflictResolver
from src.reconciliation.priority_matrix import PriorityMatrix

# Canonical test user and reference instant
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_DATE = date(2026, 2, 23)
NOW = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_obs(
    source: DataSource,
    value: float,
    metric: str = "weight",
    day: date = TEST_DATE,
    hours_ago: float | None = None,
    unit: str = "",
    user_id: UUID | None = TEST_USER_ID,
) -> Observation:
    """Build an observation; ``hours_ago`` sets observed_at relative to NOW."""
    observed_at = NOW - timedelta(hours=hours_ago) if hours_ago is not None else None
    return Observation(
        metric_name=metric,
        source=source,
        value=value,
        unit=unit,
        measurement_date=day,
        observed_at=observed_at,
        user_id=user_id,
    )


def make_scored(
    source: DataSource,
    value: float,
    confidence: float,
    metric: str = "weight",
    day: date = TEST_DATE,
    observed_at: datetime | None = None,
) -> ScoredObservation:
    """Build a scored observation with an explicit confidence."""
    return ScoredObservation(
        observation=Observation(
            metric_name=metric,
            source=source,
            value=value,
            unit="",
            measurement_date=day,
            observed_at=observed_at,
            user_id=TEST_USER_ID,
        ),
        confidence=confidence,
        factors=ConfidenceFactors(
            source_reliability=min(confidence, 40.0),
            data_freshness=0.0,
            measurement_frequency=0.0,
            cross_validation=0.0,
        ),
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def reconciliation_config() -> ReconciliationConfig:
    """Load the real bundled config for tests."""
    return load_reconciliation_config()


@pytest.fixture
def matrix(reconciliation_config: ReconciliationConfig) -> PriorityMatrix:
    return PriorityMatrix(reconciliation_config)


@pytest.fixture
def scorer(matrix: PriorityMatrix) -> ConfidenceScorer:
    return ConfidenceScorer(matrix, clock=fixed_clock)


@pytest.fixture
def resolver(matrix: PriorityMatrix) -> ConflictResolver:
    return ConflictResolver(matrix)


# ---------------------------------------------------------------------------
# Observation fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def day_of_readings() -> list[Observation]:
    """One realistic day across devices, plus yesterday's scale reading."""
    return [
        # Body composition: scanner vs scale
        make_obs(DataSource.INBODY, 80.2, "weight", hours_ago=4, unit="kg"),
        make_obs(DataSource.WITHINGS, 80.9, "weight", hours_ago=5, unit="kg"),
        make_obs(DataSource.WITHINGS, 81.0, "weight", TEST_DATE - timedelta(days=1), hours_ago=29, unit="kg"),
        # Activity: two wearables
        make_obs(DataSource.GARMIN, 10000, "steps", hours_ago=1, unit="count"),
        make_obs(DataSource.APPLE_HEALTH, 11000, "steps", hours_ago=1, unit="count"),
        # Recovery: two wearables
        make_obs(DataSource.WHOOP, 55.0, "hrv", hours_ago=6, unit="ms"),
        make_obs(DataSource.OURA, 60.0, "hrv", hours_ago=6, unit="ms"),
        # Sleep: single source
        make_obs(DataSource.WHOOP, 7.2, "sleep_duration", hours_ago=6, unit="h"),
        # General health: manual entry vs ring
        make_obs(DataSource.MANUAL, 36.6, "body_temperature", hours_ago=3, unit="°C"),
        make_obs(DataSource.OURA, 36.9, "body_temperature", hours_ago=6, unit="°C"),
    ]
