"""Unified metric fetcher — the reconciliation pipeline for one user.

For a user (and optionally a metric or date range), gathers all raw readings
from the metric store, scores them as one batch, groups them by
(metric_name, measurement_date), and resolves each group with the strategy
configured for its metric family.

Only the store call is asynchronous.  Scoring and resolution start once the
full candidate set is in hand, because cross-validation and grouping need to
see every reading of a day at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Sequence
from uuid import UUID

from src.reconciliation.base import (
    DateRange,
    MetricStore,
    Observation,
    ReconciledValue,
    ScoredObservation,
)
from src.reconciliation.confidence_scorer import FREQUENCY_WINDOW_DAYS, ConfidenceScorer
from src.reconciliation.config_loader import ReconciliationConfig, get_reconciliation_config
from src.reconciliation.conflict_resolver import ConflictResolutionConfig, ConflictResolver
from src.reconciliation.priority_matrix import PriorityMatrix

logger = logging.getLogger("reconciliation.fetcher")

GroupKey = tuple[str, date]


# ---------------------------------------------------------------------------
# Grouping helpers
# ---------------------------------------------------------------------------


def group_by_metric_day(
    scored: Iterable[ScoredObservation],
) -> dict[GroupKey, list[ScoredObservation]]:
    """Group scored readings into conflict sets keyed by (metric_name, date).

    Groups keep the order readings arrived in.
    """
    groups: dict[GroupKey, list[ScoredObservation]] = defaultdict(list)
    for item in scored:
        groups[(item.metric_name, item.measurement_date)].append(item)
    return dict(groups)


def latest_groups(
    groups: dict[GroupKey, list[ScoredObservation]],
) -> dict[GroupKey, list[ScoredObservation]]:
    """Keep only the most recent day's group for each metric."""
    latest_day: dict[str, date] = {}
    for metric, day in groups:
        if metric not in latest_day or day > latest_day[metric]:
            latest_day[metric] = day
    return {(metric, day): groups[(metric, day)] for metric, day in latest_day.items()}


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class UnifiedFetcher:
    """Fetch, score, group, and resolve metrics for a user.

    Usage::

        fetcher = UnifiedFetcher(PostgresMetricStore())
        today = await fetcher.reconcile_latest(user_id, ["weight", "steps"])
        weight = await fetcher.reconcile_history(
            user_id, "weight", DateRange(date(2026, 1, 1), date(2026, 1, 31)),
        )

    Args:
        store:         Source of raw observations.
        config:        ReconciliationConfig (loaded from singleton if None).
        clock:         Returns the reference instant (UTC) for freshness and
                       for the "latest" lookback window.
        fetch_timeout: Overall budget in seconds for the store call.
    """

    def __init__(
        self,
        store: MetricStore,
        config: ReconciliationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        fetch_timeout: float | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_reconciliation_config()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._fetch_timeout = fetch_timeout
        matrix = PriorityMatrix(self._config)
        self._scorer = ConfidenceScorer(matrix, clock=self._clock)
        self._resolver = ConflictResolver(matrix)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def reconcile_latest(
        self,
        user_id: UUID,
        metric_names: Sequence[str] | None = None,
    ) -> list[ReconciledValue]:
        """Reconcile the most recent day of each metric.

        Only days inside the lookback window count as "latest", but readings
        from the 29 days before it are fetched too so the frequency factor
        scores a day the same way a history query would.

        Args:
            user_id:      Owner of the readings.
            metric_names: Restrict to these metrics (None = every metric).

        Returns:
            One ReconciledValue per metric that has data, sorted by metric name.
        """
        now = self._clock()
        cutoff = now.date() - timedelta(days=self._config.latest.lookback_days)
        fetch_start = cutoff - timedelta(days=FREQUENCY_WINDOW_DAYS - 1)
        observations = await self._fetch(user_id, metric_names, fetch_start, None)

        groups = latest_groups({
            key: members
            for key, members in group_by_metric_day(
                self._scorer.calculate_batch(observations, now)
            ).items()
            if key[1] >= cutoff
        })
        results = self._resolve_groups(
            groups, self._config.latest.min_confidence_threshold
        )
        results.sort(key=lambda r: r.metric_name)

        logger.info(
            "Reconciled latest for %s: %d readings → %d metrics",
            user_id, len(observations), len(results),
        )
        return results

    async def reconcile_history(
        self,
        user_id: UUID,
        metric_name: str,
        date_range: DateRange,
    ) -> list[ReconciledValue]:
        """Reconcile one metric for every day in a date range.

        Readings from the 29 days before ``date_range.start`` are fetched too
        so early days get a fair frequency score; they are never returned.

        Returns:
            At most one ReconciledValue per day, newest first.
        """
        now = self._clock()
        fetch_start = date_range.start - timedelta(days=FREQUENCY_WINDOW_DAYS - 1)
        observations = await self._fetch(user_id, [metric_name], fetch_start, date_range.end)

        groups = {
            key: members
            for key, members in group_by_metric_day(
                self._scorer.calculate_batch(observations, now)
            ).items()
            if key[0] == metric_name and key[1] in date_range
        }
        results = self._resolve_groups(
            groups, self._config.history.min_confidence_threshold
        )
        results.sort(key=lambda r: r.measurement_date, reverse=True)

        logger.info(
            "Reconciled %s history for %s (%s → %s): %d days",
            metric_name, user_id, date_range.start, date_range.end, len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _fetch(
        self,
        user_id: UUID,
        metric_names: Sequence[str] | None,
        start_date: date | None,
        end_date: date | None,
    ) -> list[Observation]:
        call = self._store.fetch_observations(user_id, metric_names, start_date, end_date)
        if self._fetch_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._fetch_timeout)

    def _resolve_groups(
        self,
        groups: dict[GroupKey, list[ScoredObservation]],
        min_confidence: float,
    ) -> list[ReconciledValue]:
        results: list[ReconciledValue] = []
        for (metric, day), members in groups.items():
            reconciled = self.resolve_group(metric, day, members, min_confidence)
            if reconciled is not None:
                results.append(reconciled)
        return results

    def resolve_group(
        self,
        metric_name: str,
        measurement_date: date,
        members: Sequence[ScoredObservation],
        min_confidence: float | None = None,
    ) -> ReconciledValue | None:
        """Resolve one (metric, day) conflict set.

        Single readings pass through untouched.  Larger sets are resolved with
        the metric's configured strategy and checked for outliers.

        Returns:
            The ReconciledValue, or None for an empty set.
        """
        if not members:
            return None

        candidate_sources = tuple(m.source for m in members)
        if len(members) == 1:
            return ReconciledValue(
                metric_name=metric_name,
                measurement_date=measurement_date,
                winner=members[0],
                strategy=None,
                candidate_sources=candidate_sources,
            )

        resolution = ConflictResolutionConfig(
            strategy=self._config.strategy_for(metric_name),
            min_confidence_threshold=min_confidence,
            allowed_deviation=self._config.outlier_deviation_pct,
        )
        winner = self._resolver.resolve(members, resolution)
        if winner is None:
            return None

        outliers = self._resolver.detect_outliers(members, resolution.allowed_deviation)
        if outliers:
            logger.warning(
                "Outliers in %s on %s: %s (allowed deviation %.0f%%)",
                metric_name,
                measurement_date,
                ", ".join(f"{o.source.value}={o.value:g}" for o in outliers),
                resolution.allowed_deviation,
            )

        logger.debug(
            "Resolved %s on %s with %s: %d candidates → %s=%g (confidence %.1f)",
            metric_name, measurement_date, resolution.strategy.value,
            len(members), winner.source.value, winner.value, winner.confidence,
        )
        return ReconciledValue(
            metric_name=metric_name,
            measurement_date=measurement_date,
            winner=winner,
            strategy=resolution.strategy,
            candidate_sources=candidate_sources,
            outlier_sources=tuple(o.source for o in outliers),
        )
