"""Raw metric stores feeding the unified fetcher.

    InMemoryMetricStore  — fixed list of observations (tests, replays, batch jobs)
    PostgresMetricStore  — reads the ``unified_metrics`` table through asyncpg
    FanOutMetricStore    — queries several stores/partitions concurrently

Stores never retry and never swallow errors: a failing partition fails the
whole fetch, and the caller decides what to do about it.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date, datetime
from typing import Any, Mapping, Sequence
from uuid import UUID

from src.reconciliation.base import DataSource, MetricStore, Observation
from src.services import supabase

logger = logging.getLogger("reconciliation.stores")

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _matches(
    obs: Observation,
    user_id: UUID,
    metric_names: Sequence[str] | None,
    start_date: date | None,
    end_date: date | None,
) -> bool:
    if obs.user_id is not None and obs.user_id != user_id:
        return False
    if metric_names is not None and obs.metric_name not in metric_names:
        return False
    if start_date is not None and obs.measurement_date < start_date:
        return False
    if end_date is not None and obs.measurement_date > end_date:
        return False
    return True


class InMemoryMetricStore(MetricStore):
    """Serve observations from a list held in memory.

    Observations without a ``user_id`` are visible to every user.
    """

    def __init__(self, observations: Sequence[Observation] = ()) -> None:
        self._observations = tuple(observations)

    async def fetch_observations(
        self,
        user_id: UUID,
        metric_names: Sequence[str] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Observation]:
        return [
            obs for obs in self._observations
            if _matches(obs, user_id, metric_names, start_date, end_date)
        ]

    def __len__(self) -> int:
        return len(self._observations)


def row_to_observation(row: Mapping[str, Any], user_id: UUID | None = None) -> Observation | None:
    """Convert a ``unified_metrics`` row into an Observation.

    Returns None (and logs) for rows whose source slug is not a known device.
    """
    source = DataSource.from_slug(str(row["source"]))
    if source is None or source.is_synthetic:
        logger.warning(
            "Skipping %s reading with unknown source %r", row["metric_name"], row["source"]
        )
        return None

    measurement_date = row["measurement_date"]
    if isinstance(measurement_date, datetime):
        measurement_date = measurement_date.date()
    elif isinstance(measurement_date, str):
        measurement_date = date.fromisoformat(measurement_date[:10])

    metric_id = row.get("metric_id")
    return Observation(
        metric_name=row["metric_name"],
        source=source,
        value=float(row["value"]),
        unit=row.get("unit") or "",
        measurement_date=measurement_date,
        observed_at=row.get("created_at"),
        user_id=user_id,
        metric_id=str(metric_id) if metric_id is not None else None,
    )


class PostgresMetricStore(MetricStore):
    """Read normalized readings from Postgres with RLS user context.

    Usage::

        store = PostgresMetricStore(table="unified_metrics")
        observations = await store.fetch_observations(user_id, ["weight"])
    """

    def __init__(self, table: str = "unified_metrics") -> None:
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid metrics table name: {table!r}")
        self._table = table

    async def fetch_observations(
        self,
        user_id: UUID,
        metric_names: Sequence[str] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Observation]:
        conditions = ["user_id = $1"]
        params: list[Any] = [user_id]
        idx = 2

        if metric_names is not None:
            conditions.append(f"metric_name = ANY(${idx}::text[])")
            params.append(list(metric_names))
            idx += 1
        if start_date:
            conditions.append(f"measurement_date >= ${idx}")
            params.append(start_date)
            idx += 1
        if end_date:
            conditions.append(f"measurement_date <= ${idx}")
            params.append(end_date)
            idx += 1

        where = " AND ".join(conditions)
        rows = await supabase.fetch(
            f"SELECT metric_id, metric_name, source, value, unit, measurement_date, created_at "
            f"FROM {self._table} WHERE {where} "
            f"ORDER BY measurement_date DESC, created_at DESC",
            *params,
            user_id=user_id,
        )

        observations = []
        for row in rows:
            obs = row_to_observation(dict(row), user_id)
            if obs is not None:
                observations.append(obs)
        logger.debug(
            "Fetched %d/%d readings for %s from %s",
            len(observations), len(rows), user_id, self._table,
        )
        return observations


class FanOutMetricStore(MetricStore):
    """Query several stores concurrently and join their results.

    Results are concatenated in store order (not completion order) so the
    downstream output stays deterministic.  The first failing store fails the
    whole fetch; a ``timeout`` (seconds) bounds the joined fetch.
    """

    def __init__(self, stores: Sequence[MetricStore], timeout: float | None = None) -> None:
        if not stores:
            raise ValueError("FanOutMetricStore needs at least one store")
        self._stores = tuple(stores)
        self._timeout = timeout

    async def fetch_observations(
        self,
        user_id: UUID,
        metric_names: Sequence[str] | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Observation]:
        gathered = asyncio.gather(
            *(
                store.fetch_observations(user_id, metric_names, start_date, end_date)
                for store in self._stores
            )
        )
        if self._timeout is not None:
            results = await asyncio.wait_for(gathered, timeout=self._timeout)
        else:
            results = await gathered

        joined = [obs for partition in results for obs in partition]
        logger.debug(
            "Fan-out fetch for %s: %d stores → %d readings",
            user_id, len(self._stores), len(joined),
        )
        return joined
