"""
Floor Monitor — Production Estimator.

Converts running time into produced units for each machine and keeps the
per-shift snapshot. Within a shift the accumulated production never goes
down; the only way to lower it is an explicit ProductionCorrection.
"""

from __future__ import annotations

import math
import time
from datetime import datetime, timedelta
from typing import Optional

from core.exceptions import InvariantViolation
from edge.snapshot_store import SnapshotStore
from logger import get_logger
from schemas.production import ProductionCorrection, ProductionReading, ProductionSnapshot
from services.shift_clock import ShiftClock

logger = get_logger(__name__)


def compute_efficiency(running_minutes: float, minutes_since_start: float) -> int:
    """Share of elapsed shift time spent running, as a 0..100 integer."""
    if minutes_since_start <= 0:
        return 0
    value = round(100 * running_minutes / minutes_since_start)
    return max(0, min(100, value))


def compute_target(speed_per_minute: Optional[float], shift_minutes: int) -> int:
    if not speed_per_minute or speed_per_minute <= 0:
        return 0
    return int(round(speed_per_minute * shift_minutes))


def units_for(elapsed_minutes: float, speed_per_minute: float) -> int:
    """Whole units produced in ``elapsed_minutes`` at ``speed_per_minute``."""
    if elapsed_minutes <= 0 or speed_per_minute <= 0:
        return 0
    # Round first so 30 min at 10/min is 300 even when the float lands on 299.999...
    return int(math.floor(round(elapsed_minutes * speed_per_minute, 9)))


class ProductionEstimator:
    """Owns the snapshot of every machine for the current shift."""

    def __init__(
        self,
        store: SnapshotStore,
        clock: ShiftClock,
        tick_interval_seconds: float = 1.0,
        monotonic_fn=time.monotonic,
    ) -> None:
        self._store = store
        self._clock = clock
        self._tick_interval = tick_interval_seconds
        self._monotonic = monotonic_fn
        self._last_tick: dict[int, float] = {}
        self.logger = logger.bind(service="ProductionEstimator")

    @property
    def clock(self) -> ShiftClock:
        return self._clock

    # =========================================================================
    # Snapshot lifecycle
    # =========================================================================

    def current_snapshot(self, machine_id: int, at: Optional[datetime] = None) -> Optional[ProductionSnapshot]:
        """Snapshot for the shift containing ``at``, starting a fresh one on rollover.

        Returns None when ``at`` belongs to a shift older than the stored one;
        late events for a closed shift are ignored.
        """
        at = at or self._clock.now()
        shift_start = self._clock.shift_start(at)
        snapshot = self._store.get(machine_id)

        if snapshot is not None and snapshot.shift_start == shift_start:
            return snapshot
        if snapshot is not None and snapshot.shift_start > shift_start:
            self.logger.debug(
                "Ignoring event for closed shift",
                machine_id=machine_id,
                event_shift=shift_start.isoformat(),
                current_shift=snapshot.shift_start.isoformat(),
            )
            return None

        if snapshot is not None:
            self.logger.info(
                "Shift rollover, production reset",
                machine_id=machine_id,
                previous_shift=snapshot.shift_start.isoformat(),
                previous_production=snapshot.accumulated_production,
                shift_start=shift_start.isoformat(),
            )
        fresh = ProductionSnapshot(machine_id=machine_id, shift_start=shift_start)
        self._store.save(fresh)
        return fresh

    def _check_monotonic(self, previous: ProductionSnapshot, updated: ProductionSnapshot) -> None:
        floor_value = max(previous.accumulated_production, previous.last_calculated_production)
        if updated.accumulated_production < floor_value:
            raise InvariantViolation(updated.machine_id, floor_value, updated.accumulated_production)

    def commit(self, previous: ProductionSnapshot, updated: ProductionSnapshot) -> ProductionSnapshot:
        """Persist ``updated`` unless it would lower production within the shift."""
        if updated.shift_start == previous.shift_start:
            try:
                self._check_monotonic(previous, updated)
            except InvariantViolation as e:
                self.logger.warning("Discarded lower production value", machine_id=e.machine_id,
                                    previous=e.previous, attempted=e.attempted)
                return previous
        self._store.save(updated)
        return updated

    # =========================================================================
    # Accumulation
    # =========================================================================

    def accumulate(
        self,
        machine_id: int,
        from_ts: datetime,
        to_ts: datetime,
        speed_per_minute: float,
    ) -> Optional[ProductionSnapshot]:
        """Count the running interval [from_ts, to_ts) into the snapshot.

        Only the part of the interval after the snapshot's ``last_estimate_at``
        is counted, so live ticks and the closing status change never add the
        same minutes twice. An interval straddling a shift boundary is
        clamped to the new shift.
        """
        snapshot = self.current_snapshot(machine_id, to_ts)
        if snapshot is None:
            return None

        start = max(from_ts, snapshot.shift_start)
        if snapshot.last_estimate_at is not None and snapshot.last_estimate_at > start:
            start = snapshot.last_estimate_at
        elapsed = max(0.0, (to_ts - start).total_seconds() / 60.0)
        units = units_for(elapsed, speed_per_minute)

        last_estimate_at = to_ts
        if snapshot.last_estimate_at is not None and snapshot.last_estimate_at > to_ts:
            last_estimate_at = snapshot.last_estimate_at

        updated = snapshot.model_copy(update={
            "accumulated_production": snapshot.accumulated_production + units,
            "accumulated_running_minutes": snapshot.accumulated_running_minutes + elapsed,
            "last_estimate_at": last_estimate_at,
        })
        result = self.commit(snapshot, updated)
        if units:
            self.logger.debug("Production accumulated", machine_id=machine_id,
                              units=units, elapsed_minutes=round(elapsed, 3),
                              production=result.accumulated_production)
        return result

    def tick(
        self,
        machine_id: int,
        running_since: datetime,
        now: datetime,
        speed_per_minute: float,
    ) -> Optional[ProductionSnapshot]:
        """Live increment while a machine is RUNNING.

        Runs at most once per tick interval of wall time per machine and
        only converts whole units, carrying the fractional remainder in
        ``last_estimate_at``.
        """
        wall = self._monotonic()
        last = self._last_tick.get(machine_id)
        if last is not None and wall - last < self._tick_interval:
            return None
        self._last_tick[machine_id] = wall

        snapshot = self.current_snapshot(machine_id, now)
        if snapshot is None or speed_per_minute <= 0:
            return snapshot

        start = max(running_since, snapshot.shift_start)
        if snapshot.last_estimate_at is not None and snapshot.last_estimate_at > start:
            start = snapshot.last_estimate_at
        elapsed = (now - start).total_seconds() / 60.0
        units = units_for(elapsed, speed_per_minute)
        if units < 1:
            return snapshot

        consumed = units / speed_per_minute
        updated = snapshot.model_copy(update={
            "accumulated_production": snapshot.accumulated_production + units,
            "accumulated_running_minutes": snapshot.accumulated_running_minutes + consumed,
            "last_estimate_at": start + timedelta(minutes=consumed),
        })
        return self.commit(snapshot, updated)

    def apply_correction(self, correction: ProductionCorrection, now: Optional[datetime] = None) -> ProductionSnapshot:
        """Overwrite the count with an operator correction, bypassing the monotonic guard."""
        snapshot = self.current_snapshot(correction.machine_id, now)
        if snapshot is None:
            snapshot = self.current_snapshot(correction.machine_id, self._clock.now())
        updated = snapshot.model_copy(update={
            "accumulated_production": correction.value,
            "last_calculated_production": correction.value,
        })
        self._store.save(updated)
        self.logger.info(
            "Production corrected",
            machine_id=correction.machine_id,
            previous=snapshot.accumulated_production,
            value=correction.value,
            corrected_by=correction.corrected_by,
            reason=correction.reason,
        )
        return updated

    # =========================================================================
    # Reading
    # =========================================================================

    def reading(
        self,
        machine_id: int,
        now: datetime,
        speed_per_minute: Optional[float],
        is_running: bool,
        running_since: Optional[datetime] = None,
    ) -> ProductionReading:
        """Current production, running minutes, efficiency and target for display.

        Running minutes include the not-yet-converted tail since the last
        estimate when the machine is running.
        """
        snapshot = self.current_snapshot(machine_id, now) or ProductionSnapshot(
            machine_id=machine_id, shift_start=self._clock.shift_start(now)
        )
        running = snapshot.accumulated_running_minutes
        if is_running:
            tail_start = snapshot.last_estimate_at or running_since
            if running_since is not None and (tail_start is None or running_since > tail_start):
                tail_start = running_since
            if tail_start is not None:
                tail_start = max(tail_start, snapshot.shift_start)
                running += max(0.0, (now - tail_start).total_seconds() / 60.0)

        minutes = self._clock.minutes_since_shift_start(now)
        return ProductionReading(
            machine_id=machine_id,
            current_production=int(snapshot.accumulated_production),
            running_minutes=round(running, 2),
            efficiency=compute_efficiency(running, minutes),
            target_production=compute_target(speed_per_minute, self._clock.shift_minutes),
            is_running=is_running,
            shift_start=snapshot.shift_start,
        )
