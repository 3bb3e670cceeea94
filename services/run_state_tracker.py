"""
Floor Monitor — Run State Tracker.

Per-machine status state machine (RUNNING, STOPPED, MAINTENANCE, OFF_SHIFT)
driven by transport events. Leaving RUNNING hands the finished interval to
the estimator; any other event re-estimates and triggers reconciliation.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional, Protocol

from core.exceptions import ConfigurationMissing
from logger import get_logger, machine_context
from schemas.production import MachineEvent, MachineEventType, MachineRunState, MachineStatus
from services.production_estimator import ProductionEstimator

logger = get_logger(__name__)


class SpeedLookup(Protocol):
    async def speed_for(self, machine_id: int) -> float: ...


class Reconciler(Protocol):
    async def reconcile(self, machine_id: int, now: Optional[datetime] = None): ...


class StatusHistory(Protocol):
    async def record_status(self, machine_id: int, status: MachineStatus, changed_at: datetime) -> None: ...


class RunStateTracker:
    """Consumes MachineEvents in arrival order and keeps the run state per machine."""

    def __init__(
        self,
        estimator: ProductionEstimator,
        speeds: SpeedLookup,
        reconciler: Optional[Reconciler] = None,
        queue: Optional[asyncio.Queue] = None,
        history: Optional[StatusHistory] = None,
    ) -> None:
        self._estimator = estimator
        self._speeds = speeds
        self._reconciler = reconciler
        self._history = history
        self.queue: asyncio.Queue[MachineEvent] = queue or asyncio.Queue()
        self._states: dict[int, MachineRunState] = {}
        self.logger = logger.bind(service="RunStateTracker")

    def current(self, machine_id: int) -> Optional[MachineRunState]:
        return self._states.get(machine_id)

    def is_running(self, machine_id: int) -> bool:
        state = self._states.get(machine_id)
        return state is not None and state.status == MachineStatus.RUNNING

    def machine_ids(self) -> list[int]:
        return list(self._states)

    def seed(self, state: MachineRunState) -> None:
        """Install a known state (e.g. from the database at startup) without side effects."""
        self._states[state.machine_id] = state

    async def _speed(self, machine_id: int) -> Optional[float]:
        try:
            return await self._speeds.speed_for(machine_id)
        except ConfigurationMissing as e:
            self.logger.debug("Production estimation disabled", machine_id=machine_id, reason=e.message)
            return None

    async def handle_status_change(
        self,
        machine_id: int,
        new_status: MachineStatus,
        timestamp: datetime,
    ) -> MachineRunState:
        """Apply one transition. No transition is rejected."""
        previous = self._states.get(machine_id)
        if previous is not None and previous.status == MachineStatus.RUNNING:
            speed = await self._speed(machine_id)
            if speed is not None:
                self._estimator.accumulate(machine_id, previous.status_changed_at, timestamp, speed)

        state = MachineRunState(machine_id=machine_id, status=new_status, status_changed_at=timestamp)
        self._states[machine_id] = state
        await self._record(machine_id, new_status, timestamp)
        self.logger.info(
            "Machine status changed",
            machine_id=machine_id,
            from_status=previous.status.value if previous else None,
            to_status=new_status.value,
        )
        return state

    async def _record(self, machine_id: int, status: MachineStatus, timestamp: datetime) -> None:
        """Persist the transition; the server summary is built from this history."""
        if self._history is None:
            return
        try:
            await self._history.record_status(machine_id, status, timestamp)
        except Exception as e:
            self.logger.error("Status history write failed: %s", e, machine_id=machine_id, status=status.value)

    async def refresh(self, machine_id: int, now: Optional[datetime] = None) -> None:
        """Re-estimate a running machine up to ``now``."""
        state = self._states.get(machine_id)
        if state is None or state.status != MachineStatus.RUNNING:
            return
        speed = await self._speed(machine_id)
        if speed is None:
            return
        now = now or self._estimator.clock.now()
        self._estimator.tick(machine_id, state.status_changed_at, now, speed)

    async def handle_event(self, event: MachineEvent) -> None:
        if event.type == MachineEventType.STATUS_CHANGED:
            if event.status is None:
                self.logger.warning("Status event without status", machine_id=event.machine_id)
                return
            await self.handle_status_change(event.machine_id, event.status, event.timestamp)
        else:
            await self.refresh(event.machine_id, event.timestamp)

        if self._reconciler is not None:
            try:
                await self._reconciler.reconcile(event.machine_id, event.timestamp)
            except Exception as e:
                self.logger.warning("Reconcile after event failed: %s", e, machine_id=event.machine_id)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Drain the inbound queue until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            try:
                with machine_context(event.machine_id):
                    await self.handle_event(event)
            except Exception as e:
                self.logger.warning("Event handling failed: %s", e, event_type=event.type.value)
            finally:
                self.queue.task_done()
