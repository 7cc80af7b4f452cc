"""Canonical data models for the metric reconciliation engine.

Every metric store returns ``Observation`` instances; the scorer turns them
into ``ScoredObservation`` and the fetcher emits one ``ReconciledValue`` per
metric per day.  These types are the single source of truth consumed by the
scorer, resolver, fetcher, and API layer.

All models are frozen: reconciliation is a pure function over its inputs and
nothing here is mutated after construction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Sequence
from uuid import UUID


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DataSource(str, Enum):
    """Device or service that reported an observation.

    ``AGGREGATED`` is not a device: it tags values synthesized by the
    resolver (confidence-weighted average / even-sized median) so consumers
    can tell them apart from device-reported readings.
    """

    INBODY = "inbody"              # professional body-composition scanner
    WITHINGS = "withings"          # smart scale
    WHOOP = "whoop"
    OURA = "oura"
    GARMIN = "garmin"
    APPLE_HEALTH = "apple_health"
    TERRA = "terra"                # third-party aggregator
    MANUAL = "manual"
    AGGREGATED = "aggregated"

    @property
    def is_synthetic(self) -> bool:
        return self is DataSource.AGGREGATED

    @classmethod
    def from_slug(cls, slug: str) -> "DataSource | None":
        """Parse a stored source slug, case-insensitively.

        Returns None for unknown slugs instead of raising so that callers can
        decide whether to skip the record.
        """
        try:
            return cls(slug.strip().lower())
        except ValueError:
            return None


class MetricCategory(str, Enum):
    """Coarse metric classification used to pick a priority matrix row."""

    BODY_COMPOSITION = "body_composition"
    ACTIVITY = "activity"
    RECOVERY = "recovery"
    CARDIOVASCULAR = "cardiovascular"
    SLEEP = "sleep"
    HEALTH = "health"


class ResolutionStrategy(str, Enum):
    """How a conflict set is collapsed into a single value."""

    HIGHEST_CONFIDENCE = "highest_confidence"
    HIGHEST_PRIORITY = "highest_priority"
    AVERAGE = "average"
    MEDIAN = "median"
    MOST_RECENT = "most_recent"
    MANUAL_OVERRIDE = "manual_override"


# ---------------------------------------------------------------------------
# Observations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Observation:
    """A single source-attributed reading of one metric on one date.

    Attributes:
        metric_name:      Physiological quantity (e.g. 'weight', 'sleep_duration').
        source:           Reporting device/service.
        value:            Numeric value, already unit-normalized upstream.
        unit:             Unit string (informational only).
        measurement_date: Calendar date the reading belongs to (conflict grouping key).
        observed_at:      When the reading was recorded (freshness only).
        user_id:          Owner of the reading.
        metric_id:        Store row identifier, if any.
    """

    metric_name: str
    source: DataSource
    value: float
    unit: str
    measurement_date: date
    observed_at: datetime | None = None
    user_id: UUID | None = None
    metric_id: str | None = None


@dataclass(frozen=True)
class ConfidenceFactors:
    """The four independently bounded sub-scores behind a confidence value.

    Attributes:
        source_reliability:    0–40, rescaled priority matrix score.
        data_freshness:        0–20, step function of reading age.
        measurement_frequency: 0–20, step function of 30-day reading count.
        cross_validation:      0–20, agreement with other sources that day.
    """

    source_reliability: float
    data_freshness: float
    measurement_frequency: float
    cross_validation: float

    @property
    def total(self) -> float:
        raw = (
            self.source_reliability
            + self.data_freshness
            + self.measurement_frequency
            + self.cross_validation
        )
        return min(max(raw, 0.0), 100.0)

    def to_dict(self) -> dict[str, float]:
        return {
            "source_reliability": self.source_reliability,
            "data_freshness": self.data_freshness,
            "measurement_frequency": self.measurement_frequency,
            "cross_validation": self.cross_validation,
        }


@dataclass(frozen=True)
class ScoredObservation:
    """An observation paired with its 0–100 confidence and factor breakdown."""

    observation: Observation
    confidence: float
    factors: ConfidenceFactors

    @property
    def metric_name(self) -> str:
        return self.observation.metric_name

    @property
    def source(self) -> DataSource:
        return self.observation.source

    @property
    def value(self) -> float:
        return self.observation.value

    @property
    def measurement_date(self) -> date:
        return self.observation.measurement_date


@dataclass(frozen=True)
class ReconciledValue:
    """The reconciled ground-truth value for one (metric, day).

    Attributes:
        metric_name:       Metric being reconciled.
        measurement_date:  Day being reconciled.
        winner:            Selected (or synthesized) scored observation.
        strategy:          Strategy used, or None when the day had a single reading.
        candidate_sources: Sources of every reading in the conflict set.
        outlier_sources:   Sources flagged by outlier detection (advisory).
    """

    metric_name: str
    measurement_date: date
    winner: ScoredObservation
    strategy: ResolutionStrategy | None = None
    candidate_sources: tuple[DataSource, ...] = field(default_factory=tuple)
    outlier_sources: tuple[DataSource, ...] = field(default_factory=tuple)

    @property
    def value(self) -> float:
        return self.winner.value

    @property
    def unit(self) -> str:
        return self.winner.observation.unit

    @property
    def source(self) -> DataSource:
        return self.winner.source

    @property
    def confidence(self) -> float:
        return self.winner.confidence

    @property
    def factors(self) -> ConfidenceFactors:
        return self.winner.factors

    @property
    def is_synthetic(self) -> bool:
        return self.source.is_synthetic

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dict with a stable key order."""
        return {
            "metric_name": self.metric_name,
            "measurement_date": self.measurement_date.isoformat(),
            "value": self.value,
            "unit": self.unit,
            "source": self.source.value,
            "is_synthetic": self.is_synthetic,
            "confidence": self.confidence,
            "factors": self.factors.to_dict(),
            "strategy": self.strategy.value if self.strategy else None,
            "candidate_sources": [s.value for s in self.candidate_sources],
            "outlier_sources": [s.value for s in self.outlier_sources],
        }


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"DateRange start {self.start} is after end {self.end}"
            )

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end


# ---------------------------------------------------------------------------
# Raw metric store
# ---------------------------------------------------------------------------


class MetricStore(ABC):
    """Abstract source of raw observations for one user.

    Implementations may hit a database, a cache, or several partitions.
    Failures are raised to the caller unchanged; the reconciliation core
    never retries.
    """

    @abstractmethod
    async def fetch_observations(
        self,
        user_id: UUID,
        metric_names: Sequence[str] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Observation]:
        """Return raw observations for a user.

        Args:
            user_id:      Owner of the readings.
            metric_names: Restrict to these metric names (None = all).
            start_date:   Earliest measurement_date to include (inclusive).
            end_date:     Latest measurement_date to include (inclusive).

        Returns:
            Observations in store order.
        """
