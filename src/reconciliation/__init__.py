"""Multi-source metric reconciliation engine.

Decides which reading of a physiological metric (weight, sleep duration,
HRV, steps, ...) is ground truth for a day when several devices report it.

Core modules:
    base               — canonical data models and the MetricStore ABC
    config_loader      — load/validate/hot-reload reconciliation_config.yaml
    priority_matrix    — per-(source, category) reliability ranking
    confidence_scorer  — 0–100 trust score from four signals
    conflict_resolver  — strategy-based resolution and outlier detection
    unified_fetcher    — fetch → score → group → resolve pipeline
    stores             — in-memory, Postgres, and fan-out metric stores
"""

from src.reconciliation.base import (
    ConfidenceFactors,
    DataSource,
    DateRange,
    MetricCategory,
    MetricStore,
    Observation,
    ReconciledValue,
    ResolutionStrategy,
    ScoredObservation,
)
from src.reconciliation.config_loader import ReconciliationConfig, get_reconciliation_config
from src.reconciliation.confidence_scorer import ConfidenceScorer
from src.reconciliation.conflict_resolver import ConflictResolutionConfig, ConflictResolver
from src.reconciliation.priority_matrix import PriorityMatrix, infer_category
from src.reconciliation.unified_fetcher import UnifiedFetcher

__all__ = [
    "ConfidenceFactors",
    "ConfidenceScorer",
    "ConflictResolutionConfig",
    "ConflictResolver",
    "DataSource",
    "DateRange",
    "MetricCategory",
    "MetricStore",
    "Observation",
    "PriorityMatrix",
    "ReconciledValue",
    "ReconciliationConfig",
    "ResolutionStrategy",
    "ScoredObservation",
    "UnifiedFetcher",
    "get_reconciliation_config",
    "infer_category",
]
