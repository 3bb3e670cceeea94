"""
Floor Monitor — Current-Shift Production Summary.

Server-side aggregate behind ``GET /api/machines/{id}/production/current-shift``.
Production is estimated from persisted status history inside the shift
window, so the figure is independent of calendar-day counters.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from core.exceptions import ConfigurationMissing, ResourceNotFound
from logger import get_logger
from schemas.production import MachineStatus, ShiftSummary
from services.production_estimator import compute_efficiency, compute_target, units_for
from services.shift_clock import ShiftClock
from services.stores import MachineStore

logger = get_logger(__name__)


def running_minutes_in_window(
    transitions: Iterable[tuple[MachineStatus, datetime]],
    start: datetime,
    end: datetime,
) -> float:
    """Minutes spent RUNNING inside [start, end).

    ``transitions`` are (status, changed_at) pairs, oldest first; a pair
    before ``start`` sets the status in effect when the window opens.
    """
    total = 0.0
    ordered = sorted(transitions, key=lambda t: t[1])
    for i, (status, changed_at) in enumerate(ordered):
        if status != MachineStatus.RUNNING:
            continue
        until = ordered[i + 1][1] if i + 1 < len(ordered) else end
        lo = max(changed_at, start)
        hi = min(until, end)
        if hi > lo:
            total += (hi - lo).total_seconds() / 60.0
    return total


class MachineSpeeds:
    """Speed lookup with a small per-process cache."""

    def __init__(self, machines: MachineStore) -> None:
        self._machines = machines
        self._cache: dict[int, float] = {}

    async def speed_for(self, machine_id: int) -> float:
        if machine_id in self._cache:
            return self._cache[machine_id]
        machine = await self._machines.get_machine(machine_id)
        if machine is None or not machine.production_speed or machine.production_speed <= 0:
            raise ConfigurationMissing(machine_id, "production_speed")
        self._cache[machine_id] = float(machine.production_speed)
        return self._cache[machine_id]

    def forget(self, machine_id: Optional[int] = None) -> None:
        if machine_id is None:
            self._cache.clear()
        else:
            self._cache.pop(machine_id, None)


class ProductionSummaryService:
    def __init__(self, machines: MachineStore, clock: ShiftClock) -> None:
        self._machines = machines
        self._clock = clock
        self.logger = logger.bind(service="ProductionSummaryService")

    async def current_shift(self, machine_id: int, now: Optional[datetime] = None) -> ShiftSummary:
        now = now or self._clock.now()
        machine = await self._machines.get_machine(machine_id)
        if machine is None:
            raise ResourceNotFound("Machine", machine_id)

        shift_start = self._clock.shift_start(now)
        transitions = await self._machines.status_history(machine_id, shift_start, now)
        running = running_minutes_in_window(transitions, shift_start, now)
        speed = machine.production_speed or 0.0
        is_running = bool(transitions) and transitions[-1][0] == MachineStatus.RUNNING

        summary = ShiftSummary(
            machine_id=machine_id,
            estimated_production=units_for(running, speed),
            running_minutes=round(running, 2),
            efficiency=compute_efficiency(running, self._clock.minutes_since_shift_start(now)),
            shift_start=shift_start,
            is_running=is_running,
            target_production=compute_target(speed, self._clock.shift_minutes),
        )
        self.logger.debug("Shift summary computed", machine_id=machine_id,
                          estimated_production=summary.estimated_production)
        return summary
