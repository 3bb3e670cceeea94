"""Floor Monitor — Pytest Configuration & Fixtures.

In-memory stores and recording channel senders so the services can be
exercised without PostgreSQL, Redis or network access.

Usage:
    @pytest.mark.asyncio
    async def test_something(threshold_store, machine_store):
        ...
"""

import itertools
from datetime import date, datetime
from typing import Any, Optional

import pytest

from core.exceptions import ActiveRowConflict
from edge.snapshot_store import SnapshotStore
from schemas.notification import (
    AlertChannelPreference,
    AlertRequest,
    NotificationLogEntry,
    Priority,
    SendResult,
    StoredAlert,
    UserContact,
)
from schemas.production import (
    MachineInfo,
    MachineStatus,
    ProductionAlert,
    ProductionCounter,
    ProductionPopup,
)
from services.production_estimator import ProductionEstimator
from services.shift_clock import ShiftClock


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Settable wall clock for ShiftClock(now_fn=...)."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


# =============================================================================
# Stores
# =============================================================================

class InMemoryMachineStore:
    def __init__(self) -> None:
        self.machines: dict[int, MachineInfo] = {}
        self.history: dict[int, list[tuple[MachineStatus, datetime]]] = {}

    def add(self, machine: MachineInfo) -> MachineInfo:
        self.machines[machine.id] = machine
        return machine

    def record(self, machine_id: int, status: MachineStatus, at: datetime) -> None:
        self.history.setdefault(machine_id, []).append((status, at))

    async def record_status(self, machine_id, status, changed_at):
        self.record(machine_id, status, changed_at)

    async def get_machine(self, machine_id: int) -> Optional[MachineInfo]:
        return self.machines.get(machine_id)

    async def status_history(self, machine_id, start, end):
        rows = sorted(self.history.get(machine_id, []), key=lambda r: r[1])
        prior = [r for r in rows if r[1] < start][-1:]
        inside = [r for r in rows if start <= r[1] <= end]
        return prior + inside


class InMemoryCounterStore:
    def __init__(self) -> None:
        self.counts: dict[tuple[int, date], int] = {}

    async def increment(self, machine_id, day, quantity):
        key = (machine_id, day)
        self.counts[key] = self.counts.get(key, 0) + quantity
        return ProductionCounter(machine_id=machine_id, day=day, count=self.counts[key])

    async def reset(self, machine_id, day):
        self.counts[(machine_id, day)] = 0
        return ProductionCounter(machine_id=machine_id, day=day, count=0)

    async def get(self, machine_id, day):
        if (machine_id, day) not in self.counts:
            return None
        return ProductionCounter(machine_id=machine_id, day=day, count=self.counts[(machine_id, day)])


class InMemoryThresholdStore:
    def __init__(self) -> None:
        self.popups: dict[int, ProductionPopup] = {}
        self.alerts: dict[int, ProductionAlert] = {}
        self._ids = itertools.count(1)

    async def get_active_popup(self, machine_id, day):
        for p in self.popups.values():
            if p.machine_id == machine_id and p.day == day and p.is_active:
                return p.model_copy()
        return None

    async def insert_popup(self, machine_id, day, count, threshold, message):
        if any(p.machine_id == machine_id and p.day == day and p.is_active for p in self.popups.values()):
            raise ActiveRowConflict("production_popups", machine_id, day)
        popup = ProductionPopup(id=next(self._ids), machine_id=machine_id, day=day,
                                production_count=count, threshold=threshold, message=message)
        self.popups[popup.id] = popup
        return popup.model_copy()

    async def update_popup(self, popup_id, count, threshold, message):
        popup = self.popups[popup_id].model_copy(update={
            "production_count": count, "threshold": threshold, "message": message,
        })
        self.popups[popup_id] = popup
        return popup.model_copy()

    async def get_popup(self, popup_id):
        popup = self.popups.get(popup_id)
        return popup.model_copy() if popup else None

    async def acknowledge_popup(self, popup_id, acknowledged_by, at):
        popup = self.popups.get(popup_id)
        if popup is None or not popup.is_active:
            return None
        popup = popup.model_copy(update={"is_active": False, "acknowledged_by": acknowledged_by,
                                         "acknowledged_at": at})
        self.popups[popup_id] = popup
        return popup.model_copy()

    async def list_active_popups(self, machine_id):
        return [p.model_copy() for p in self.popups.values() if p.machine_id == machine_id and p.is_active]

    async def get_active_alert(self, machine_id, day):
        for a in self.alerts.values():
            if a.machine_id == machine_id and a.day == day and a.is_active:
                return a.model_copy()
        return None

    async def insert_alert(self, machine_id, day, count, threshold, message, target_roles, metadata):
        if any(a.machine_id == machine_id and a.day == day and a.is_active for a in self.alerts.values()):
            raise ActiveRowConflict("production_alerts", machine_id, day)
        alert = ProductionAlert(id=next(self._ids), machine_id=machine_id, day=day, production_count=count,
                                threshold=threshold, message=message, target_roles=target_roles,
                                metadata=metadata)
        self.alerts[alert.id] = alert
        return alert.model_copy()

    async def update_alert(self, alert_id, count, threshold, message, metadata):
        alert = self.alerts[alert_id]
        alert = alert.model_copy(update={
            "production_count": count, "threshold": threshold, "message": message,
            "metadata": {**alert.metadata, **metadata},
        })
        self.alerts[alert_id] = alert
        return alert.model_copy()

    async def deactivate_for_machine(self, machine_id):
        popups = alerts = 0
        for pid, p in list(self.popups.items()):
            if p.machine_id == machine_id and p.is_active:
                self.popups[pid] = p.model_copy(update={"is_active": False})
                popups += 1
        for aid, a in list(self.alerts.items()):
            if a.machine_id == machine_id and a.is_active:
                self.alerts[aid] = a.model_copy(update={"is_active": False})
                alerts += 1
        return popups, alerts


class InMemoryNotificationStore:
    def __init__(self) -> None:
        self.alerts: list[StoredAlert] = []
        self.users: dict[int, UserContact] = {}
        self.preferences: dict[int, AlertChannelPreference] = {}
        self.logs: list[NotificationLogEntry] = []

    def add_user(self, user: UserContact, preference: Optional[AlertChannelPreference] = None) -> UserContact:
        self.users[user.id] = user
        if preference is not None:
            self.preferences[user.id] = preference
        return user

    async def find_recent_alert(self, machine_id, alert_type, since, priority=None, message_prefix=None):
        for alert in reversed(self.alerts):
            if alert.machine_id != machine_id or alert.type != alert_type or alert.created_at < since:
                continue
            if priority is not None and alert.priority != priority:
                continue
            if message_prefix is not None and not alert.message.startswith(message_prefix):
                continue
            return alert.id
        return None

    async def insert_alert(self, request: AlertRequest, created_at: datetime) -> StoredAlert:
        alert = StoredAlert(id=len(self.alerts) + 1, machine_id=request.machine_id, type=request.type,
                            priority=request.priority, title=request.title, message=request.message,
                            metadata=request.metadata, created_at=created_at)
        self.alerts.append(alert)
        return alert

    async def users_by_roles(self, roles):
        wanted = {r.upper() for r in roles}
        return [u for u in self.users.values() if u.role in wanted and u.is_active]

    async def users_by_ids(self, user_ids):
        return [u for u in self.users.values() if u.id in user_ids]

    async def active_users(self):
        return [u for u in self.users.values() if u.is_active]

    async def get_preference(self, user_id):
        return self.preferences.get(user_id)

    async def save_preference(self, preference):
        self.preferences[preference.user_id] = preference
        return preference

    async def append_log(self, entry):
        self.logs.append(entry)


# =============================================================================
# Senders and summary sources
# =============================================================================

class RecordingSender:
    def __init__(self, success: bool = True, error: Optional[str] = None, raises: Optional[Exception] = None) -> None:
        self.success = success
        self.error = error
        self.raises = raises
        self.calls: list[dict[str, Any]] = []

    async def send(self, recipient, title, body, priority):
        self.calls.append({"user_id": recipient.id, "title": title, "body": body, "priority": priority})
        if self.raises is not None:
            raise self.raises
        return SendResult(success=self.success, error=self.error)


class StaticSummarySource:
    """Returns queued summaries in order; raises queued exceptions."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls = 0

    async def fetch(self, machine_id):
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


# =============================================================================
# Fixtures
# =============================================================================

DAY_SHIFT_START = datetime(2026, 3, 10, 7, 0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 8, 0))


@pytest.fixture
def shift_clock(fake_clock) -> ShiftClock:
    return ShiftClock(now_fn=fake_clock)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def snapshot_store():
    store = SnapshotStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def estimator(snapshot_store, shift_clock, monotonic) -> ProductionEstimator:
    return ProductionEstimator(snapshot_store, shift_clock, tick_interval_seconds=1.0, monotonic_fn=monotonic)


@pytest.fixture
def machine_store() -> InMemoryMachineStore:
    store = InMemoryMachineStore()
    store.add(MachineInfo(
        id=1,
        name="Press 1",
        code="PR-01",
        production_speed=10.0,
        production_config={"popup_threshold": 200, "alert_threshold": 300},
    ))
    return store


@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def threshold_store() -> InMemoryThresholdStore:
    return InMemoryThresholdStore()


@pytest.fixture
def notification_store() -> InMemoryNotificationStore:
    return InMemoryNotificationStore()
