"""
Floor Monitor — Production Threshold Evaluator.

On every counter increment decides whether the operator popup and the
manager alert for the machine must be created, raised in place, or left
alone. At most one active popup and one active alert per machine per day.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Protocol

from core.exceptions import ActiveRowConflict, BusinessRuleViolation, ResourceNotFound
from logger import get_logger
from schemas.production import (
    MachineInfo,
    ProductionAlert,
    ProductionPopup,
    ThresholdOutcome,
    ThresholdResult,
)
from services.stores import ThresholdStore

logger = get_logger(__name__)

ALERT_TARGET_ROLES = ["MANAGER", "LEADER"]


def popup_message(machine_name: str, count: int) -> str:
    return f"Machine {machine_name} reached {count} products. Perform quality test."


def alert_message(machine_name: str, count: int, threshold: int) -> str:
    return f"ALERT: Machine {machine_name} reached {count} products (limit {threshold}). Action required."


class AlertNotifier(Protocol):
    async def dispatch_production_alert(self, machine: MachineInfo, alert: ProductionAlert): ...


class ThresholdEvaluator:
    def __init__(self, store: ThresholdStore, notifier: Optional[AlertNotifier] = None) -> None:
        self._store = store
        self._notifier = notifier
        self.logger = logger.bind(service="ThresholdEvaluator")

    async def evaluate(self, machine: MachineInfo, day: date, count: int, now: Optional[datetime] = None) -> ThresholdResult:
        """Check both thresholds for the machine's new daily count."""
        cfg = machine.thresholds
        result = ThresholdResult(machine_id=machine.id, count=count)

        if cfg.popups_enabled:
            result.popup, popup = await self._evaluate_popup(machine, day, count, cfg.popup_threshold)
            result.popup_id = popup.id if popup else None

        if cfg.alerts_enabled:
            result.alert, alert = await self._evaluate_alert(machine, day, count, cfg.alert_threshold, now)
            result.alert_id = alert.id if alert else None
            if alert is not None and result.alert in (ThresholdOutcome.CREATED, ThresholdOutcome.UPDATED):
                await self._notify(machine, alert)

        return result

    async def _evaluate_popup(
        self, machine: MachineInfo, day: date, count: int, threshold: int
    ) -> tuple[ThresholdOutcome, Optional[ProductionPopup]]:
        if count < threshold:
            return ThresholdOutcome.UNCHANGED, None

        message = popup_message(machine.name, count)
        existing = await self._store.get_active_popup(machine.id, day)
        if existing is None:
            try:
                popup = await self._store.insert_popup(machine.id, day, count, threshold, message)
                self.logger.info("Production popup created", machine_id=machine.id,
                                 popup_id=popup.id, count=count, threshold=threshold)
                return ThresholdOutcome.CREATED, popup
            except ActiveRowConflict:
                # Lost the race to a concurrent increment; fall through to update.
                existing = await self._store.get_active_popup(machine.id, day)
                if existing is None:
                    raise

        if count > existing.production_count:
            popup = await self._store.update_popup(existing.id, count, threshold, message)
            self.logger.info("Production popup updated", machine_id=machine.id,
                             popup_id=popup.id, count=count)
            return ThresholdOutcome.UPDATED, popup
        return ThresholdOutcome.UNCHANGED, existing

    async def _evaluate_alert(
        self, machine: MachineInfo, day: date, count: int, threshold: int, now: Optional[datetime]
    ) -> tuple[ThresholdOutcome, Optional[ProductionAlert]]:
        if count < threshold:
            return ThresholdOutcome.UNCHANGED, None

        message = alert_message(machine.name, count, threshold)
        metadata = {
            "machine_name": machine.name,
            "machine_code": machine.code,
            "timestamp": (now or datetime.now()).isoformat(),
            "exceed_by": count - threshold,
        }
        existing = await self._store.get_active_alert(machine.id, day)
        if existing is None:
            try:
                alert = await self._store.insert_alert(
                    machine.id, day, count, threshold, message, list(ALERT_TARGET_ROLES), metadata
                )
                self.logger.warning("Production alert created", machine_id=machine.id,
                                    alert_id=alert.id, count=count, threshold=threshold)
                return ThresholdOutcome.CREATED, alert
            except ActiveRowConflict:
                existing = await self._store.get_active_alert(machine.id, day)
                if existing is None:
                    raise

        if count > existing.production_count:
            alert = await self._store.update_alert(existing.id, count, threshold, message, metadata)
            self.logger.info("Production alert updated", machine_id=machine.id,
                             alert_id=alert.id, count=count, exceed_by=metadata["exceed_by"])
            return ThresholdOutcome.UPDATED, alert
        return ThresholdOutcome.UNCHANGED, existing

    async def _notify(self, machine: MachineInfo, alert: ProductionAlert) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.dispatch_production_alert(machine, alert)
        except Exception as e:
            self.logger.warning("Production alert dispatch failed: %s", e,
                                machine_id=machine.id, alert_id=alert.id)

    async def acknowledge_popup(
        self, machine_id: int, popup_id: int, acknowledged_by: str, now: Optional[datetime] = None
    ) -> ProductionPopup:
        """Deactivate a popup. The counter is left untouched."""
        popup = await self._store.get_popup(popup_id)
        if popup is None or popup.machine_id != machine_id:
            raise ResourceNotFound("ProductionPopup", popup_id)
        if not popup.is_active:
            raise BusinessRuleViolation(
                "popup already acknowledged",
                {"popup_id": popup_id, "acknowledged_by": popup.acknowledged_by},
            )
        acknowledged = await self._store.acknowledge_popup(popup_id, acknowledged_by, now or datetime.now())
        if acknowledged is None:
            raise BusinessRuleViolation("popup already acknowledged", {"popup_id": popup_id})
        self.logger.info("Production popup acknowledged", machine_id=machine_id,
                         popup_id=popup_id, acknowledged_by=acknowledged_by)
        return acknowledged

    async def deactivate_all(self, machine_id: int) -> tuple[int, int]:
        popups, alerts = await self._store.deactivate_for_machine(machine_id)
        self.logger.info("Production popups and alerts deactivated", machine_id=machine_id,
                         popups=popups, alerts=alerts)
        return popups, alerts

    async def active_popups(self, machine_id: int) -> list[ProductionPopup]:
        return await self._store.list_active_popups(machine_id)
