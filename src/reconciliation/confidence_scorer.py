"""Confidence scoring for reconciled observations.

Each observation gets a 0–100 trust score built additively from four
independent signals.  Each signal has a fixed band; the total is capped at 100.

Bands:
    source_reliability     0–40  — priority matrix score rescaled from 1–10
    data_freshness         0–20  — hours since the reading was taken
    measurement_frequency  0–20  — same-source readings over the trailing 30 days
    cross_validation       0–20  — agreement with other sources on the same day

The step tables below are product decisions; change them only together with
the dashboards that explain confidence to users.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, time, timezone
from typing import Callable, Iterable, Sequence

from src.reconciliation.base import ConfidenceFactors, Observation, ScoredObservation
from src.reconciliation.priority_matrix import PriorityMatrix

logger = logging.getLogger("reconciliation.scorer")

# ---------------------------------------------------------------------------
# Band constants
# ---------------------------------------------------------------------------

RELIABILITY_BAND = 40.0
MAX_CONFIDENCE = 100.0

# (upper bound in hours, exclusive) → points
FRESHNESS_STEPS: tuple[tuple[float, float], ...] = (
    (1, 20.0),
    (24, 18.0),
    (72, 15.0),
    (168, 10.0),
    (720, 5.0),
)

FREQUENCY_WINDOW_DAYS = 30

# (minimum readings in window) → points
FREQUENCY_STEPS: tuple[tuple[int, float], ...] = (
    (28, 20.0),  # daily
    (12, 15.0),  # every other day
    (4, 10.0),   # weekly
    (1, 5.0),    # sparse
)

# Score when no other source reported the metric that day
CROSS_VALIDATION_NEUTRAL = 10.0

# (upper bound of mean absolute deviation %, exclusive) → points
CROSS_VALIDATION_STEPS: tuple[tuple[float, float], ...] = (
    (2, 20.0),
    (5, 15.0),
    (10, 10.0),
    (20, 5.0),
)


# ---------------------------------------------------------------------------
# Factor functions
# ---------------------------------------------------------------------------


def reliability_score(priority: int) -> float:
    """Rescale a 1–10 priority into the 0–40 reliability band."""
    return priority * RELIABILITY_BAND / 10


def freshness_score(hours_elapsed: float) -> float:
    """Map reading age in hours onto the 0–20 freshness band."""
    for upper, points in FRESHNESS_STEPS:
        if hours_elapsed < upper:
            return points
    return 0.0


def frequency_score(count: int) -> float:
    """Map a 30-day reading count onto the 0–20 frequency band."""
    for minimum, points in FREQUENCY_STEPS:
        if count >= minimum:
            return points
    return 0.0


def deviation_score(deviation_pct: float) -> float:
    """Map a mean absolute deviation percentage onto the 0–20 band."""
    for upper, points in CROSS_VALIDATION_STEPS:
        if deviation_pct < upper:
            return points
    return 0.0


def mean_deviation_pct(values: Sequence[float]) -> float:
    """Average absolute deviation from the mean, as a percentage of |mean|.

    A zero mean yields 0.0 when every value is zero and ``inf`` otherwise.
    """
    mean = sum(values) / len(values)
    avg_dev = sum(abs(v - mean) for v in values) / len(values)
    if mean == 0:
        return 0.0 if avg_dev == 0 else float("inf")
    return avg_dev / abs(mean) * 100


def _hours_since(observation: Observation, now: datetime) -> float:
    observed = observation.observed_at or datetime.combine(
        observation.measurement_date, time.min, tzinfo=timezone.utc
    )
    if observed.tzinfo is None:
        observed = observed.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max((now - observed).total_seconds() / 3600.0, 0.0)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------


class ConfidenceScorer:
    """Compute 0–100 confidence for observations.

    ``clock`` supplies the reference instant for freshness; inject a fixed
    clock to make scoring reproducible.

    Usage::

        scorer = ConfidenceScorer()
        scored = scorer.calculate_batch(observations)
    """

    def __init__(
        self,
        matrix: PriorityMatrix | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._matrix = matrix or PriorityMatrix()
        self._clock = clock or _utc_now

    def factors(
        self,
        observation: Observation,
        all_observations: Iterable[Observation],
        now: datetime | None = None,
    ) -> ConfidenceFactors:
        """Compute the four factors for one observation.

        Args:
            observation:      The reading being scored.
            all_observations: Every reading of the same user and metric
                              available to this request (may include
                              ``observation`` itself).
            now:              Reference instant for freshness.
        """
        now = now or self._clock()
        metric = observation.metric_name

        priority = self._matrix.priority_for_metric(observation.source, metric)

        frequency_count = 1  # the observation itself
        same_day_others: list[float] = []
        for other in all_observations:
            if other is observation or other.metric_name != metric:
                continue
            if other.source == observation.source:
                days_before = (observation.measurement_date - other.measurement_date).days
                if 0 <= days_before < FREQUENCY_WINDOW_DAYS:
                    frequency_count += 1
            elif other.measurement_date == observation.measurement_date:
                same_day_others.append(other.value)

        if same_day_others:
            cross = deviation_score(
                mean_deviation_pct([observation.value, *same_day_others])
            )
        else:
            cross = CROSS_VALIDATION_NEUTRAL

        return ConfidenceFactors(
            source_reliability=reliability_score(priority),
            data_freshness=freshness_score(_hours_since(observation, now)),
            measurement_frequency=frequency_score(frequency_count),
            cross_validation=cross,
        )

    def score(
        self,
        observation: Observation,
        all_observations: Iterable[Observation],
        now: datetime | None = None,
    ) -> ScoredObservation:
        """Score one observation against the other readings of its metric."""
        factors = self.factors(observation, all_observations, now)
        confidence = min(factors.total, MAX_CONFIDENCE)
        return ScoredObservation(
            observation=observation,
            confidence=confidence,
            factors=factors,
        )

    def calculate_batch(
        self,
        observations: Sequence[Observation],
        now: datetime | None = None,
    ) -> list[ScoredObservation]:
        """Score every observation against the full supplied set.

        Readings are compared only with readings of the same metric, and the
        whole batch shares one reference instant.  Output order matches input
        order.
        """
        now = now or self._clock()
        by_metric: dict[str, list[Observation]] = defaultdict(list)
        for obs in observations:
            by_metric[obs.metric_name].append(obs)

        scored = [self.score(obs, by_metric[obs.metric_name], now) for obs in observations]
        logger.debug(
            "Scored %d observations across %d metrics", len(scored), len(by_metric)
        )
        return scored
