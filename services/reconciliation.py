"""
Floor Monitor — Reconciliation Merge.

Periodically pulls the server's current-shift summary and folds it into the
local snapshot with a max-of merge. Transport failures and timeouts keep the
local value; a stale or lower server number can never pull the count down.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Iterable, Optional, Protocol

import httpx

from core.exceptions import ExternalServiceError
from logger import get_logger, log_external_call
from schemas.production import MergeResult, ProductionSnapshot, ShiftSummary
from services.production_estimator import ProductionEstimator

logger = get_logger(__name__)


def merge_snapshot(snapshot: ProductionSnapshot, summary: ShiftSummary) -> ProductionSnapshot:
    """Max-of merge of a server summary into a local snapshot.

    Idempotent and commutative in the summaries applied. ``last_estimate_at``
    is untouched so live estimation carries on from where it was.
    """
    return snapshot.model_copy(update={
        "accumulated_production": max(snapshot.accumulated_production, float(summary.estimated_production)),
        "accumulated_running_minutes": max(snapshot.accumulated_running_minutes, float(summary.running_minutes)),
        "last_calculated_production": max(snapshot.last_calculated_production, float(summary.estimated_production)),
    })


class SummarySource(Protocol):
    async def fetch(self, machine_id: int) -> ShiftSummary: ...


class HttpSummaryClient:
    """Fetches ``/api/machines/{id}/production/current-shift`` over HTTP."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    async def fetch(self, machine_id: int) -> ShiftSummary:
        url = f"{self._base_url}/api/machines/{machine_id}/production/current-shift"
        start = time.perf_counter()
        try:
            if self._client is not None:
                r = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    r = await client.get(url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            log_external_call("summary-api", "GET", url, error=str(e),
                              duration_ms=round((time.perf_counter() - start) * 1000, 2))
            raise ExternalServiceError("summary-api", str(e)) from e
        log_external_call("summary-api", "GET", url, status_code=r.status_code,
                          duration_ms=round((time.perf_counter() - start) * 1000, 2))
        return ShiftSummary(**r.json())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class ReconciliationService:
    """
    Reconciles local snapshots against the server summary.
    Runs reconcile_all() as a background asyncio task every interval_seconds.
    """

    def __init__(
        self,
        estimator: ProductionEstimator,
        source: SummarySource,
        timeout_seconds: float = 5.0,
        interval_seconds: float = 30.0,
    ) -> None:
        self._estimator = estimator
        self._source = source
        self._timeout = timeout_seconds
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.logger = logger.bind(service="ReconciliationService")

    async def reconcile(self, machine_id: int, now: Optional[datetime] = None) -> MergeResult:
        """Fetch and merge one machine. Never raises on transport failure."""
        now = now or self._estimator.clock.now()
        snapshot = self._estimator.current_snapshot(machine_id, now)
        if snapshot is None:
            snapshot = self._estimator.current_snapshot(machine_id, self._estimator.clock.now())

        try:
            summary = await asyncio.wait_for(self._source.fetch(machine_id), timeout=self._timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Summary fetch timed out", machine_id=machine_id, timeout_s=self._timeout)
            return MergeResult(
                machine_id=machine_id, fetched=False, error="timeout",
                production=snapshot.accumulated_production,
                running_minutes=snapshot.accumulated_running_minutes,
            )
        except Exception as e:
            self.logger.warning("Summary fetch failed: %s", e, machine_id=machine_id)
            return MergeResult(
                machine_id=machine_id, fetched=False, error=str(e),
                production=snapshot.accumulated_production,
                running_minutes=snapshot.accumulated_running_minutes,
            )

        # The snapshot may have rolled over while the fetch was in flight.
        current = self._estimator.current_snapshot(machine_id, now) or snapshot
        if summary.shift_start != current.shift_start:
            self.logger.info(
                "Discarded summary for another shift",
                machine_id=machine_id,
                summary_shift=summary.shift_start.isoformat(),
                local_shift=current.shift_start.isoformat(),
            )
            return MergeResult(
                machine_id=machine_id, fetched=True, error="shift_mismatch",
                production=current.accumulated_production,
                running_minutes=current.accumulated_running_minutes,
            )

        merged = self._estimator.commit(current, merge_snapshot(current, summary))
        return MergeResult(
            machine_id=machine_id,
            fetched=True,
            production=merged.accumulated_production,
            running_minutes=merged.accumulated_running_minutes,
        )

    async def reconcile_all(self, machine_ids: Iterable[int]) -> list[MergeResult]:
        results = []
        for machine_id in machine_ids:
            results.append(await self.reconcile(machine_id))
        return results

    async def _loop(self, machine_ids_fn) -> None:
        while not self._stop_event.is_set():
            try:
                await self.reconcile_all(machine_ids_fn())
            except Exception as e:
                self.logger.warning("Reconcile loop error: %s", e)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

    def start(self, machine_ids_fn) -> None:
        """Start the background loop. Idempotent."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(machine_ids_fn))

    async def stop(self) -> None:
        """Signal the loop to exit and wait for it."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
