"""Read endpoints for reconciled metrics and the source priority matrix."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import Fetcher, Matrix
from src.models.reconciliation import (
    CategoryPrioritiesRead,
    ReconciledValueRead,
    SourcePriorityRead,
)
from src.reconciliation.base import DateRange, MetricCategory

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])
logger = logging.getLogger("reconciliation.api")


# ---------- Reconciled values ----------

@router.get("/{user_id}/latest", response_model=list[ReconciledValueRead])
async def get_latest(
    user_id: uuid.UUID,
    fetcher: Fetcher,
    metric: list[str] | None = Query(default=None),
) -> Any:
    try:
        results = await fetcher.reconcile_latest(user_id, metric)
    except asyncio.TimeoutError:
        logger.warning("Metric store timed out reconciling latest for %s", user_id)
        raise HTTPException(status_code=504, detail="Metric store timed out")
    return [ReconciledValueRead.from_reconciled(r) for r in results]


@router.get("/{user_id}/history", response_model=list[ReconciledValueRead])
async def get_history(
    user_id: uuid.UUID,
    fetcher: Fetcher,
    metric: str = Query(min_length=1),
    start_date: date = Query(),
    end_date: date = Query(),
) -> Any:
    try:
        date_range = DateRange(start_date, end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        results = await fetcher.reconcile_history(user_id, metric, date_range)
    except asyncio.TimeoutError:
        logger.warning("Metric store timed out reconciling %s history for %s", metric, user_id)
        raise HTTPException(status_code=504, detail="Metric store timed out")
    return [ReconciledValueRead.from_reconciled(r) for r in results]


# ---------- Priority matrix ----------

@router.get("/priorities/{category}", response_model=CategoryPrioritiesRead)
async def get_priorities(category: str, matrix: Matrix) -> Any:
    try:
        metric_category = MetricCategory(category)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown metric category: {category}")

    return CategoryPrioritiesRead(
        category=metric_category,
        default_priority=matrix.default_priority,
        sources=[
            SourcePriorityRead(source=s, priority=matrix.priority(s, metric_category))
            for s in matrix.ranked_sources(metric_category)
        ],
    )
