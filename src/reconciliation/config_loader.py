"""Load, validate, and hot-reload the reconciliation configuration.

The config lives in ``reconciliation_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_reconciliation_config()``
to re-read from disk after an admin update — no restart required.

Usage::

    from src.reconciliation.config_loader import get_reconciliation_config

    config = get_reconciliation_config()
    config.priority_entry(DataSource.INBODY, MetricCategory.BODY_COMPOSITION)  # 10
    config.strategy_for("body_weight")   # ResolutionStrategy.HIGHEST_PRIORITY
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from src.reconciliation.base import DataSource, MetricCategory, ResolutionStrategy

logger = logging.getLogger("reconciliation.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "reconciliation_config.yaml"

PRIORITY_MIN = 1
PRIORITY_MAX = 10


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyRule:
    """One row of the per-metric-family strategy policy."""

    strategy: ResolutionStrategy
    keywords: tuple[str, ...]

    def matches(self, metric_name: str) -> bool:
        name = metric_name.lower()
        return any(kw in name for kw in self.keywords)


@dataclass(frozen=True)
class QueryConfig:
    """Resolution settings for one query type ('latest' or 'history')."""

    min_confidence_threshold: float
    lookback_days: int = 30


@dataclass(frozen=True)
class ReconciliationConfig:
    """Complete, validated reconciliation configuration.

    This is the single in-memory representation of reconciliation_config.yaml.
    The priority matrix, scorer, and fetcher all read from this object.

    Attributes:
        version:               Config schema version string.
        default_priority:      Priority used for pairs absent from the matrix.
        priority_matrix:       category → source → priority (1–10).
        metric_categories:     Explicit lower-cased metric name → category.
        strategy_rules:        Ordered strategy policy rules.
        default_strategy:      Strategy for metrics no rule matches.
        latest:                Settings for "latest value" queries.
        history:               Settings for history queries.
        outlier_deviation_pct: Allowed deviation from the group mean (%).
    """

    version: str
    default_priority: int
    priority_matrix: Mapping[MetricCategory, Mapping[DataSource, int]]
    metric_categories: Mapping[str, MetricCategory]
    strategy_rules: tuple[StrategyRule, ...]
    default_strategy: ResolutionStrategy
    latest: QueryConfig
    history: QueryConfig
    outlier_deviation_pct: float = 15.0
    _raw: dict = field(default_factory=dict, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def priority_entry(self, source: DataSource, category: MetricCategory) -> int | None:
        """Return the configured priority for a pair, or None if absent."""
        return self.priority_matrix.get(category, {}).get(source)

    def category_override(self, metric_name: str) -> MetricCategory | None:
        """Return the explicit category for a metric name, if configured."""
        return self.metric_categories.get(metric_name.strip().lower())

    def strategy_for(self, metric_name: str) -> ResolutionStrategy:
        """Return the resolution strategy for a metric name.

        Rules are checked in order; the first match wins.  Unmatched names
        get ``default_strategy``.
        """
        for rule in self.strategy_rules:
            if rule.matches(metric_name):
                return rule.strategy
        return self.default_strategy


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when reconciliation_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml  # pyyaml

    if not path.exists():
        raise FileNotFoundError(f"Reconciliation config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _parse_threshold(value: Any, key: str, errors: list[str]) -> float:
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be a number, got {value!r}")
        return 0.0
    if not (0.0 <= threshold <= 100.0):
        errors.append(f"{key} = {threshold} is out of range [0, 100]")
    return threshold


def _validate_and_build(raw: dict) -> ReconciliationConfig:
    """Validate the raw YAML dict and construct a ReconciliationConfig.

    Collects every problem before raising so an admin sees them all at once.

    Raises:
        ConfigValidationError: If required fields are missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    default_priority = raw.get("default_priority", 5)
    if not isinstance(default_priority, int) or not (
        PRIORITY_MIN <= default_priority <= PRIORITY_MAX
    ):
        errors.append(
            f"default_priority must be an integer in [{PRIORITY_MIN}, {PRIORITY_MAX}], "
            f"got {default_priority!r}"
        )
        default_priority = 5

    # ── Priority matrix ──
    matrix_raw = raw.get("priority_matrix") or {}
    if not matrix_raw:
        errors.append("'priority_matrix' section is missing or empty")

    matrix: dict[MetricCategory, Mapping[DataSource, int]] = {}
    for category_key, sources in matrix_raw.items():
        try:
            category = MetricCategory(category_key)
        except ValueError:
            errors.append(f"priority_matrix.{category_key} is not a known metric category")
            continue
        if not isinstance(sources, dict):
            errors.append(f"priority_matrix.{category_key} must be a mapping of source→priority")
            continue
        row: dict[DataSource, int] = {}
        for source_key, priority in sources.items():
            source = DataSource.from_slug(str(source_key))
            if source is None or source.is_synthetic:
                errors.append(f"priority_matrix.{category_key}.{source_key} is not a known device source")
                continue
            if isinstance(priority, bool) or not isinstance(priority, int):
                errors.append(
                    f"priority_matrix.{category_key}.{source_key} must be an integer, got {priority!r}"
                )
                continue
            if not (PRIORITY_MIN <= priority <= PRIORITY_MAX):
                errors.append(
                    f"priority_matrix.{category_key}.{source_key} = {priority} "
                    f"is out of range [{PRIORITY_MIN}, {PRIORITY_MAX}]"
                )
            row[source] = priority
        matrix[category] = MappingProxyType(row)

    # ── Explicit metric categories ──
    metric_categories: dict[str, MetricCategory] = {}
    for name, category_key in (raw.get("metric_categories") or {}).items():
        try:
            metric_categories[str(name).strip().lower()] = MetricCategory(category_key)
        except ValueError:
            errors.append(f"metric_categories.{name} = {category_key!r} is not a known category")

    # ── Strategy policy ──
    policy_raw = raw.get("strategy_policy") or {}
    rules: list[StrategyRule] = []
    for i, rule_raw in enumerate(policy_raw.get("rules") or []):
        if not isinstance(rule_raw, dict):
            errors.append(f"strategy_policy.rules[{i}] must be a mapping")
            continue
        try:
            strategy = ResolutionStrategy(rule_raw.get("strategy"))
        except ValueError:
            errors.append(
                f"strategy_policy.rules[{i}].strategy {rule_raw.get('strategy')!r} is unknown"
            )
            continue
        keywords = tuple(str(k).lower() for k in (rule_raw.get("keywords") or []))
        if not keywords:
            errors.append(f"strategy_policy.rules[{i}] has no keywords")
            continue
        rules.append(StrategyRule(strategy=strategy, keywords=keywords))

    try:
        default_strategy = ResolutionStrategy(
            policy_raw.get("default", ResolutionStrategy.MANUAL_OVERRIDE.value)
        )
    except ValueError:
        errors.append(f"strategy_policy.default {policy_raw.get('default')!r} is unknown")
        default_strategy = ResolutionStrategy.MANUAL_OVERRIDE

    # ── Query thresholds ──
    queries_raw = raw.get("queries") or {}
    latest_raw = queries_raw.get("latest") or {}
    history_raw = queries_raw.get("history") or {}
    latest = QueryConfig(
        min_confidence_threshold=_parse_threshold(
            latest_raw.get("min_confidence_threshold", 30),
            "queries.latest.min_confidence_threshold",
            errors,
        ),
        lookback_days=int(latest_raw.get("lookback_days", 30)),
    )
    history = QueryConfig(
        min_confidence_threshold=_parse_threshold(
            history_raw.get("min_confidence_threshold", 20),
            "queries.history.min_confidence_threshold",
            errors,
        ),
    )
    if latest.lookback_days < 1:
        errors.append(f"queries.latest.lookback_days must be >= 1, got {latest.lookback_days}")

    # ── Outliers ──
    outliers_raw = raw.get("outliers") or {}
    try:
        outlier_pct = float(outliers_raw.get("allowed_deviation_pct", 15))
    except (TypeError, ValueError):
        errors.append(
            f"outliers.allowed_deviation_pct must be a number, "
            f"got {outliers_raw.get('allowed_deviation_pct')!r}"
        )
        outlier_pct = 15.0

    if errors:
        raise ConfigValidationError(
            f"reconciliation_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ReconciliationConfig(
        version=version,
        default_priority=default_priority,
        priority_matrix=MappingProxyType(matrix),
        metric_categories=MappingProxyType(metric_categories),
        strategy_rules=tuple(rules),
        default_strategy=default_strategy,
        latest=latest,
        history=history,
        outlier_deviation_pct=outlier_pct,
        _raw=raw,
    )


def load_reconciliation_config(path: Path | None = None) -> ReconciliationConfig:
    """Load and validate the reconciliation config from disk.

    Args:
        path: Override path to YAML. Uses the bundled file by default.

    Returns:
        Validated ReconciliationConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded reconciliation config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: ReconciliationConfig | None = None
_config_lock = threading.Lock()


def get_reconciliation_config() -> ReconciliationConfig:
    """Return the global ReconciliationConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_reconciliation_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_reconciliation_config()
    return _config


def reload_reconciliation_config(path: Path | None = None) -> ReconciliationConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_reconciliation_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info(
        "Reloaded reconciliation config: %s → %s",
        old_version,
        new_config.version,
    )
    return new_config
