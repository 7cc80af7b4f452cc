"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from src.config import Settings, get_settings
from src.reconciliation.config_loader import ReconciliationConfig, get_reconciliation_config
from src.reconciliation.priority_matrix import PriorityMatrix
from src.reconciliation.stores import PostgresMetricStore
from src.reconciliation.unified_fetcher import UnifiedFetcher


def get_fetcher(settings: Annotated[Settings, Depends(get_settings)]) -> UnifiedFetcher:
    """Build a fetcher over the Postgres metric store for one request."""
    return UnifiedFetcher(
        PostgresMetricStore(table=settings.metrics_table),
        config=get_reconciliation_config(),
        fetch_timeout=settings.fetch_timeout_seconds,
    )


def get_priority_matrix(
    config: Annotated[ReconciliationConfig, Depends(get_reconciliation_config)],
) -> PriorityMatrix:
    return PriorityMatrix(config)


# Annotated shortcuts for route signatures
Fetcher = Annotated[UnifiedFetcher, Depends(get_fetcher)]
Matrix = Annotated[PriorityMatrix, Depends(get_priority_matrix)]
