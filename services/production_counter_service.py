"""
Floor Monitor — Production Counter Service.

Daily per-machine product counter. Increments feed the threshold evaluator;
a reset zeroes the counter and clears the machine's popups and alerts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from core.exceptions import ResourceNotFound
from logger import get_logger
from schemas.production import ProductionCounter, ProductionPopup, ThresholdResult
from services.stores import CounterStore, MachineStore
from services.threshold_evaluator import ThresholdEvaluator

logger = get_logger(__name__)


class ProductionCounterService:
    def __init__(
        self,
        counters: CounterStore,
        machines: MachineStore,
        evaluator: ThresholdEvaluator,
    ) -> None:
        self._counters = counters
        self._machines = machines
        self._evaluator = evaluator
        self.logger = logger.bind(service="ProductionCounterService")

    async def increment_product_count(
        self, machine_id: int, quantity: int = 1, now: Optional[datetime] = None
    ) -> tuple[ProductionCounter, ThresholdResult]:
        """Add ``quantity`` to today's counter and evaluate thresholds.

        Raises:
            ResourceNotFound: If the machine does not exist.
            ValueError: If quantity is not positive.
        """
        if quantity < 1:
            raise ValueError("quantity must be positive")
        machine = await self._machines.get_machine(machine_id)
        if machine is None:
            raise ResourceNotFound("Machine", machine_id)

        now = now or datetime.now()
        counter = await self._counters.increment(machine_id, now.date(), quantity)
        self.logger.debug("Product count incremented", machine_id=machine_id,
                          quantity=quantity, count=counter.count)
        result = await self._evaluator.evaluate(machine, now.date(), counter.count, now)
        return counter, result

    async def reset_production_counter(self, machine_id: int, now: Optional[datetime] = None) -> ProductionCounter:
        machine = await self._machines.get_machine(machine_id)
        if machine is None:
            raise ResourceNotFound("Machine", machine_id)
        now = now or datetime.now()
        counter = await self._counters.reset(machine_id, now.date())
        await self._evaluator.deactivate_all(machine_id)
        self.logger.info("Production counter reset", machine_id=machine_id)
        return counter

    async def check_production_popups(self, machine_id: int) -> list[ProductionPopup]:
        return await self._evaluator.active_popups(machine_id)

    async def acknowledge_popup(
        self, machine_id: int, popup_id: int, acknowledged_by: str, now: Optional[datetime] = None
    ) -> ProductionPopup:
        return await self._evaluator.acknowledge_popup(machine_id, popup_id, acknowledged_by, now)
