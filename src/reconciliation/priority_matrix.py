"""Source reliability ranking per metric category.

The matrix answers one question: how much should a reading from source X be
trusted for a metric of category Y, on a 1–10 scale.  The table itself lives
in ``reconciliation_config.yaml``; this module wraps it with lookups, a
comparator, and metric-name → category inference.

Pairs missing from the table resolve to the configured neutral default (5)
so that a newly connected source never breaks resolution.
"""

from __future__ import annotations

import logging

from src.reconciliation.base import DataSource, MetricCategory
from src.reconciliation.config_loader import ReconciliationConfig, get_reconciliation_config

logger = logging.getLogger("reconciliation.matrix")


# Keyword → category rules, evaluated in order.  'hrv' must be tested before
# the bare 'hr' cardiovascular keyword.
_CATEGORY_KEYWORDS: tuple[tuple[MetricCategory, tuple[str, ...]], ...] = (
    (MetricCategory.BODY_COMPOSITION, ("weight", "fat", "muscle", "bmr", "bmi")),
    (MetricCategory.ACTIVITY, ("step", "calories", "active")),
    (MetricCategory.RECOVERY, ("recovery", "hrv")),
    (MetricCategory.CARDIOVASCULAR, ("heart", "hr")),
    (MetricCategory.SLEEP, ("sleep",)),
)


def infer_category(metric_name: str) -> MetricCategory:
    """Classify a metric name by case-insensitive keyword matching.

    Unmatched names fall into ``MetricCategory.HEALTH``.

    Args:
        metric_name: Metric identifier, e.g. 'Body Fat %' or 'hrv_rmssd'.

    Returns:
        The inferred MetricCategory.
    """
    name = metric_name.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(kw in name for kw in keywords):
            return category
    return MetricCategory.HEALTH


class PriorityMatrix:
    """Read-only (source, category) → priority lookup.

    Safe to share across requests and threads; lookups never change its
    answers, only which configuration gaps have already been logged.

    Usage::

        matrix = PriorityMatrix()
        matrix.priority(DataSource.INBODY, MetricCategory.BODY_COMPOSITION)  # 10
        matrix.ranked_sources(MetricCategory.RECOVERY)   # [WHOOP, OURA, ...]
    """

    def __init__(self, config: ReconciliationConfig | None = None) -> None:
        self._config = config or get_reconciliation_config()
        self._reported_gaps: set[tuple[DataSource, MetricCategory]] = set()

    @property
    def default_priority(self) -> int:
        return self._config.default_priority

    def priority(self, source: DataSource, category: MetricCategory) -> int:
        """Return the 1–10 reliability of a source for a metric category.

        Falls back to the neutral default when the pair is not in the table.
        Each gap is logged once per matrix, never raised.
        """
        entry = self._config.priority_entry(source, category)
        if entry is None:
            if (source, category) not in self._reported_gaps:
                self._reported_gaps.add((source, category))
                logger.warning(
                    "No priority configured for %s/%s — using default %d",
                    source.value, category.value, self._config.default_priority,
                )
            return self._config.default_priority
        return entry

    def priority_for_metric(self, source: DataSource, metric_name: str) -> int:
        return self.priority(source, self.category_for(metric_name))

    def compare(
        self, source_a: DataSource, source_b: DataSource, category: MetricCategory
    ) -> int:
        """Comparator ordering sources by descending priority.

        Returns:
            Negative if ``source_a`` ranks higher, positive if ``source_b``
            ranks higher, zero if they are equal.  Suitable for
            ``functools.cmp_to_key``.
        """
        return self.priority(source_b, category) - self.priority(source_a, category)

    def ranked_sources(self, category: MetricCategory) -> list[DataSource]:
        """Return sources with an explicit entry for a category, best first.

        Equal priorities keep their table order.  Intended for diagnostics
        and UI only; resolution never depends on it.
        """
        row = self._config.priority_matrix.get(category, {})
        return sorted(row, key=lambda s: row[s], reverse=True)

    def category_for(self, metric_name: str) -> MetricCategory:
        """Return the category for a metric name.

        An explicit entry in the config's ``metric_categories`` table wins;
        otherwise the category is inferred from keywords.
        """
        override = self._config.category_override(metric_name)
        if override is not None:
            return override
        return infer_category(metric_name)
