"""Pydantic response models for reconciled metrics and source priorities."""

from __future__ import annotations

from datetime import date

from pydantic import Field

from src.models.base import ReconBase
from src.reconciliation.base import (
    DataSource,
    MetricCategory,
    ReconciledValue,
    ResolutionStrategy,
)


class ConfidenceFactorsRead(ReconBase):
    source_reliability: float = Field(ge=0, le=40)
    data_freshness: float = Field(ge=0, le=20)
    measurement_frequency: float = Field(ge=0, le=20)
    cross_validation: float = Field(ge=0, le=20)


class ReconciledValueRead(ReconBase):
    metric_name: str
    measurement_date: date
    value: float
    unit: str
    source: DataSource
    is_synthetic: bool
    confidence: float = Field(ge=0, le=100)
    factors: ConfidenceFactorsRead
    strategy: ResolutionStrategy | None = None
    candidate_sources: list[DataSource] = Field(default_factory=list)
    outlier_sources: list[DataSource] = Field(default_factory=list)

    @classmethod
    def from_reconciled(cls, reconciled: ReconciledValue) -> "ReconciledValueRead":
        return cls.model_validate(reconciled.to_dict())


class SourcePriorityRead(ReconBase):
    source: DataSource
    priority: int = Field(ge=1, le=10)


class CategoryPrioritiesRead(ReconBase):
    category: MetricCategory
    default_priority: int
    sources: list[SourcePriorityRead]
