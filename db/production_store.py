"""Floor Monitor — SQLAlchemy production stores.

Implements MachineStore, CounterStore and ThresholdStore on one AsyncSession.
The caller owns the transaction (``get_db`` commits at the end of a request).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ActiveRowConflict
from db.models import Machine, MachineStatusHistory
from db.models import ProductionAlert as AlertRow
from db.models import ProductionCounter as CounterRow
from db.models import ProductionPopup as PopupRow
from schemas.production import (
    MachineInfo,
    MachineStatus,
    ProductionAlert,
    ProductionCounter,
    ProductionPopup,
)


def _to_alert(row: AlertRow) -> ProductionAlert:
    return ProductionAlert(
        id=row.id,
        machine_id=row.machine_id,
        day=row.day,
        production_count=row.production_count,
        threshold=row.threshold,
        alert_type=row.alert_type,
        severity=row.severity,
        message=row.message,
        target_roles=list(row.target_roles or []),
        is_active=row.is_active,
        metadata=dict(row.alert_metadata or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlMachineStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_machine(self, machine_id: int) -> Optional[MachineInfo]:
        row = await self.db.get(Machine, machine_id)
        if row is None:
            return None
        return MachineInfo.model_validate(row)

    async def status_history(
        self, machine_id: int, start: datetime, end: datetime
    ) -> list[tuple[MachineStatus, datetime]]:
        prior = await self.db.execute(
            select(MachineStatusHistory.status, MachineStatusHistory.changed_at)
            .where(MachineStatusHistory.machine_id == machine_id, MachineStatusHistory.changed_at < start)
            .order_by(MachineStatusHistory.changed_at.desc())
            .limit(1)
        )
        inside = await self.db.execute(
            select(MachineStatusHistory.status, MachineStatusHistory.changed_at)
            .where(
                MachineStatusHistory.machine_id == machine_id,
                MachineStatusHistory.changed_at >= start,
                MachineStatusHistory.changed_at <= end,
            )
            .order_by(MachineStatusHistory.changed_at.asc())
        )
        rows = list(prior.all()) + list(inside.all())
        return [(MachineStatus.parse(status), changed_at) for status, changed_at in rows]

    async def record_status(self, machine_id: int, status: MachineStatus, changed_at: datetime) -> None:
        self.db.add(MachineStatusHistory(machine_id=machine_id, status=status.value, changed_at=changed_at))
        await self.db.execute(update(Machine).where(Machine.id == machine_id).values(status=status.value))
        await self.db.flush()


class SqlCounterStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def increment(self, machine_id: int, day: date, quantity: int) -> ProductionCounter:
        stmt = pg_insert(CounterRow).values(machine_id=machine_id, day=day, count=quantity)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_production_counters_machine_day",
            set_={"count": CounterRow.count + quantity, "updated_at": func.now()},
        ).returning(CounterRow.count)
        result = await self.db.execute(stmt)
        return ProductionCounter(machine_id=machine_id, day=day, count=result.scalar_one())

    async def reset(self, machine_id: int, day: date) -> ProductionCounter:
        stmt = pg_insert(CounterRow).values(machine_id=machine_id, day=day, count=0)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_production_counters_machine_day",
            set_={"count": 0, "updated_at": func.now()},
        )
        await self.db.execute(stmt)
        return ProductionCounter(machine_id=machine_id, day=day, count=0)

    async def get(self, machine_id: int, day: date) -> Optional[ProductionCounter]:
        result = await self.db.execute(
            select(CounterRow).where(CounterRow.machine_id == machine_id, CounterRow.day == day)
        )
        row = result.scalar_one_or_none()
        return ProductionCounter.model_validate(row) if row else None


class SqlThresholdStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _insert(self, row: Any, table: str) -> Any:
        try:
            async with self.db.begin_nested():
                self.db.add(row)
                await self.db.flush()
        except IntegrityError as e:
            raise ActiveRowConflict(table, row.machine_id, row.day) from e
        return row

    # =========================================================================
    # Popups
    # =========================================================================

    async def get_active_popup(self, machine_id: int, day: date) -> Optional[ProductionPopup]:
        result = await self.db.execute(
            select(PopupRow).where(PopupRow.machine_id == machine_id, PopupRow.day == day,
                                   PopupRow.is_active.is_(True))
        )
        row = result.scalar_one_or_none()
        return ProductionPopup.model_validate(row) if row else None

    async def insert_popup(self, machine_id: int, day: date, count: int, threshold: int, message: str) -> ProductionPopup:
        row = PopupRow(machine_id=machine_id, day=day, production_count=count,
                       threshold=threshold, message=message, is_active=True)
        await self._insert(row, "production_popups")
        return ProductionPopup.model_validate(row)

    async def update_popup(self, popup_id: int, count: int, threshold: int, message: str) -> ProductionPopup:
        row = await self.db.get(PopupRow, popup_id)
        row.production_count = count
        row.threshold = threshold
        row.message = message
        row.updated_at = datetime.now()
        await self.db.flush()
        return ProductionPopup.model_validate(row)

    async def get_popup(self, popup_id: int) -> Optional[ProductionPopup]:
        row = await self.db.get(PopupRow, popup_id)
        return ProductionPopup.model_validate(row) if row else None

    async def acknowledge_popup(self, popup_id: int, acknowledged_by: str, at: datetime) -> Optional[ProductionPopup]:
        result = await self.db.execute(
            update(PopupRow)
            .where(PopupRow.id == popup_id, PopupRow.is_active.is_(True))
            .values(is_active=False, acknowledged_at=at, acknowledged_by=acknowledged_by, updated_at=at)
            .returning(PopupRow)
        )
        row = result.scalar_one_or_none()
        return ProductionPopup.model_validate(row) if row else None

    async def list_active_popups(self, machine_id: int) -> list[ProductionPopup]:
        result = await self.db.execute(
            select(PopupRow)
            .where(PopupRow.machine_id == machine_id, PopupRow.is_active.is_(True))
            .order_by(PopupRow.created_at.desc())
        )
        return [ProductionPopup.model_validate(r) for r in result.scalars().all()]

    # =========================================================================
    # Alerts
    # =========================================================================

    async def get_active_alert(self, machine_id: int, day: date) -> Optional[ProductionAlert]:
        result = await self.db.execute(
            select(AlertRow).where(AlertRow.machine_id == machine_id, AlertRow.day == day,
                                   AlertRow.is_active.is_(True))
        )
        row = result.scalar_one_or_none()
        return _to_alert(row) if row else None

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
        row = AlertRow(machine_id=machine_id, day=day, production_count=count, threshold=threshold,
                       message=message, target_roles=target_roles, alert_metadata=metadata, is_active=True)
        await self._insert(row, "production_alerts")
        return _to_alert(row)

    async def update_alert(
        self, alert_id: int, count: int, threshold: int, message: str, metadata: dict[str, Any]
    ) -> ProductionAlert:
        row = await self.db.get(AlertRow, alert_id)
        row.production_count = count
        row.threshold = threshold
        row.message = message
        row.alert_metadata = {**(row.alert_metadata or {}), **metadata}
        row.updated_at = datetime.now()
        await self.db.flush()
        return _to_alert(row)

    async def deactivate_for_machine(self, machine_id: int) -> tuple[int, int]:
        now = datetime.now()
        popups = await self.db.execute(
            update(PopupRow)
            .where(PopupRow.machine_id == machine_id, PopupRow.is_active.is_(True))
            .values(is_active=False, updated_at=now)
        )
        alerts = await self.db.execute(
            update(AlertRow)
            .where(AlertRow.machine_id == machine_id, AlertRow.is_active.is_(True))
            .values(is_active=False, updated_at=now)
        )
        return popups.rowcount, alerts.rowcount
