"""
Floor Monitor — Store interfaces.

Services receive their persistence through these protocols. The SQLAlchemy
implementations live in ``db/``; tests pass in-memory versions.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional, Protocol

from schemas.notification import (
    AlertChannelPreference,
    AlertRequest,
    NotificationLogEntry,
    Priority,
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


class MachineStore(Protocol):
    async def get_machine(self, machine_id: int) -> Optional[MachineInfo]: ...

    async def status_history(
        self, machine_id: int, start: datetime, end: datetime
    ) -> list[tuple[MachineStatus, datetime]]:
        """Transitions inside [start, end] plus the last one before ``start``, oldest first."""
        ...

    async def record_status(self, machine_id: int, status: MachineStatus, changed_at: datetime) -> None: ...


class CounterStore(Protocol):
    async def increment(self, machine_id: int, day: date, quantity: int) -> ProductionCounter: ...

    async def reset(self, machine_id: int, day: date) -> ProductionCounter: ...

    async def get(self, machine_id: int, day: date) -> Optional[ProductionCounter]: ...


class ThresholdStore(Protocol):
    async def get_active_popup(self, machine_id: int, day: date) -> Optional[ProductionPopup]: ...

    async def insert_popup(
        self, machine_id: int, day: date, count: int, threshold: int, message: str
    ) -> ProductionPopup:
        """Raises ActiveRowConflict when an active popup already exists."""
        ...

    async def update_popup(self, popup_id: int, count: int, threshold: int, message: str) -> ProductionPopup: ...

    async def get_popup(self, popup_id: int) -> Optional[ProductionPopup]: ...

    async def acknowledge_popup(self, popup_id: int, acknowledged_by: str, at: datetime) -> Optional[ProductionPopup]: ...

    async def list_active_popups(self, machine_id: int) -> list[ProductionPopup]: ...

    async def get_active_alert(self, machine_id: int, day: date) -> Optional[ProductionAlert]: ...

    async def insert_alert(
        self,
        machine_id: int,
        day: date,
        count: int,
        threshold: int,
        message: str,
        target_roles: list[str],
        metadata: dict[str, Any],
    ) -> ProductionAlert:
        """Raises ActiveRowConflict when an active alert already exists."""
        ...

    async def update_alert(
        self, alert_id: int, count: int, threshold: int, message: str, metadata: dict[str, Any]
    ) -> ProductionAlert: ...

    async def deactivate_for_machine(self, machine_id: int) -> tuple[int, int]:
        """Deactivate all active popups and alerts. Returns (popups, alerts)."""
        ...


class NotificationStore(Protocol):
    async def find_recent_alert(
        self,
        machine_id: Optional[int],
        alert_type: str,
        since: datetime,
        priority: Optional[Priority] = None,
        message_prefix: Optional[str] = None,
    ) -> Optional[int]: ...

    async def insert_alert(self, request: AlertRequest, created_at: datetime) -> StoredAlert: ...

    async def users_by_roles(self, roles: list[str]) -> list[UserContact]: ...

    async def users_by_ids(self, user_ids: list[int]) -> list[UserContact]: ...

    async def active_users(self) -> list[UserContact]: ...

    async def get_preference(self, user_id: int) -> Optional[AlertChannelPreference]: ...

    async def save_preference(self, preference: AlertChannelPreference) -> AlertChannelPreference: ...

    async def append_log(self, entry: NotificationLogEntry) -> None: ...
