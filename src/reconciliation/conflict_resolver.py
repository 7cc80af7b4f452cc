"""Conflict resolution between readings of one metric on one day.

Given every scored reading in a conflict set, the resolver picks one winner
(or synthesizes one) under the strategy it is told to use.  It does not
choose the strategy itself; the per-metric policy lives in the config and is
applied by the unified fetcher.

Strategies:
    highest_confidence  greatest confidence, first encountered on ties
    highest_priority    priority matrix score, then a tie-break chain
    average             confidence-weighted mean, tagged as AGGREGATED
    median              middle value; even sets average the two middle readings
    most_recent         latest measurement_date, then latest observed_at
    manual_override     manual entry if present, else highest_confidence

Outlier detection is advisory: it reports readings far from the group mean
but never removes them.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import timezone
from functools import reduce
from typing import Sequence

from src.reconciliation.base import DataSource, ResolutionStrategy, ScoredObservation
from src.reconciliation.priority_matrix import PriorityMatrix

logger = logging.getLogger("reconciliation.resolver")

DEFAULT_ALLOWED_DEVIATION_PCT = 15.0


@dataclass(frozen=True)
class ConflictResolutionConfig:
    """How to resolve one conflict set.

    Attributes:
        strategy:                 Strategy to apply.
        min_confidence_threshold: Drop readings below this confidence first.
                                  None disables the filter.
        allowed_deviation:        Outlier threshold in percent of the mean.
    """

    strategy: ResolutionStrategy
    min_confidence_threshold: float | None = None
    allowed_deviation: float = DEFAULT_ALLOWED_DEVIATION_PCT


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _weighted_average(values: Sequence[float], weights: Sequence[float]) -> float:
    """Compute a weighted average, falling back to a plain mean for zero weight."""
    total_weight = sum(weights)
    if total_weight == 0.0:
        return sum(values) / len(values)
    return sum(v * w for v, w in zip(values, weights)) / total_weight


def _is_sleep_length_metric(metric_name: str) -> bool:
    name = metric_name.lower()
    return "sleep" in name and ("duration" in name or "efficiency" in name)


def _observed_key(candidate: ScoredObservation) -> tuple[int, float]:
    observed = candidate.observation.observed_at
    if observed is None:
        return (0, 0.0)
    if observed.tzinfo is None:
        observed = observed.replace(tzinfo=timezone.utc)
    return (1, observed.timestamp())


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class ConflictResolver:
    """Collapse a conflict set into a single scored observation.

    Usage::

        resolver = ConflictResolver()
        winner = resolver.resolve(
            scored,
            ConflictResolutionConfig(ResolutionStrategy.HIGHEST_PRIORITY, 30),
        )
    """

    def __init__(self, matrix: PriorityMatrix | None = None) -> None:
        self._matrix = matrix or PriorityMatrix()

    def resolve(
        self,
        conflicts: Sequence[ScoredObservation],
        config: ConflictResolutionConfig,
    ) -> ScoredObservation | None:
        """Resolve a conflict set.

        Args:
            conflicts: All scored readings sharing (metric_name, measurement_date).
            config:    Strategy and optional confidence threshold.

        Returns:
            The winning (or synthesized) ScoredObservation, or None when the
            set is empty.
        """
        if not conflicts:
            return None

        eligible = list(conflicts)
        if config.min_confidence_threshold is not None:
            eligible = [
                c for c in conflicts if c.confidence >= config.min_confidence_threshold
            ]
            if not eligible:
                logger.warning(
                    "No %s reading meets min confidence %.1f (%d candidates) — using all",
                    conflicts[0].metric_name,
                    config.min_confidence_threshold,
                    len(conflicts),
                )
                eligible = list(conflicts)

        if len(eligible) == 1:
            return eligible[0]

        strategy = config.strategy
        if strategy is ResolutionStrategy.HIGHEST_CONFIDENCE:
            return self.select_highest_confidence(eligible)
        if strategy is ResolutionStrategy.HIGHEST_PRIORITY:
            return self.select_highest_priority(eligible)
        if strategy is ResolutionStrategy.AVERAGE:
            return self.calculate_average(eligible)
        if strategy is ResolutionStrategy.MEDIAN:
            return self.calculate_median(eligible)
        if strategy is ResolutionStrategy.MOST_RECENT:
            return self.select_most_recent(eligible)
        if strategy is ResolutionStrategy.MANUAL_OVERRIDE:
            return self.select_manual_override(eligible)
        raise ValueError(f"Unknown resolution strategy: {strategy!r}")

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    @staticmethod
    def select_highest_confidence(
        candidates: Sequence[ScoredObservation],
    ) -> ScoredObservation:
        # max() keeps the first of equal maxima
        return max(candidates, key=lambda c: c.confidence)

    def select_highest_priority(
        self, candidates: Sequence[ScoredObservation]
    ) -> ScoredObservation:
        """Pick by priority matrix score.

        Tie-break chain for equal priorities:
            1. sleep duration / efficiency metrics: larger value
            2. higher confidence
            3. later measurement_date
        The earlier candidate is kept when everything is equal.
        """

        def prefer(best: ScoredObservation, current: ScoredObservation) -> ScoredObservation:
            best_priority = self._matrix.priority_for_metric(best.source, best.metric_name)
            current_priority = self._matrix.priority_for_metric(
                current.source, current.metric_name
            )
            if current_priority != best_priority:
                return current if current_priority > best_priority else best

            # Main sleep segment beats a nap / partial reading
            if _is_sleep_length_metric(current.metric_name) and current.value != best.value:
                return current if current.value > best.value else best

            if current.confidence != best.confidence:
                return current if current.confidence > best.confidence else best

            return current if current.measurement_date > best.measurement_date else best

        return reduce(prefer, candidates)

    @staticmethod
    def calculate_average(
        candidates: Sequence[ScoredObservation],
    ) -> ScoredObservation:
        """Confidence-weighted mean of all values.

        The result reuses the highest-confidence reading's metadata and
        factors, with the averaged value and the AGGREGATED source.
        """
        averaged = _weighted_average(
            [c.value for c in candidates], [c.confidence for c in candidates]
        )
        best = ConflictResolver.select_highest_confidence(candidates)
        synthesized = dataclasses.replace(
            best.observation,
            value=round(averaged, 4),
            source=DataSource.AGGREGATED,
        )
        return dataclasses.replace(best, observation=synthesized)

    @staticmethod
    def calculate_median(
        candidates: Sequence[ScoredObservation],
    ) -> ScoredObservation:
        """Middle reading by value.

        Even-sized sets return the confidence-weighted average of the two
        middle readings, each weighted by its own confidence.
        """
        ordered = sorted(candidates, key=lambda c: c.value)
        mid = len(ordered) // 2
        if len(ordered) % 2 == 0:
            return ConflictResolver.calculate_average([ordered[mid - 1], ordered[mid]])
        return ordered[mid]

    @staticmethod
    def select_most_recent(
        candidates: Sequence[ScoredObservation],
    ) -> ScoredObservation:
        # Same-day sets fall through to observed_at, then first encountered
        return max(candidates, key=lambda c: (c.measurement_date, _observed_key(c)))

    @staticmethod
    def select_manual_override(
        candidates: Sequence[ScoredObservation],
    ) -> ScoredObservation:
        for candidate in candidates:
            if candidate.source is DataSource.MANUAL:
                return candidate
        return ConflictResolver.select_highest_confidence(candidates)

    # ------------------------------------------------------------------
    # Outliers
    # ------------------------------------------------------------------

    @staticmethod
    def detect_outliers(
        candidates: Sequence[ScoredObservation],
        allowed_deviation: float = DEFAULT_ALLOWED_DEVIATION_PCT,
    ) -> list[ScoredObservation]:
        """Return readings deviating from the group mean by more than ``allowed_deviation`` %.

        Fewer than two readings, or a zero mean, give no statistical basis
        and return an empty list.
        """
        if len(candidates) < 2:
            return []

        mean = sum(c.value for c in candidates) / len(candidates)
        if mean == 0:
            return []

        return [
            c for c in candidates
            if abs((c.value - mean) / mean) * 100 > allowed_deviation
        ]
