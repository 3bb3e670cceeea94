"""Current-shift summary tests (status history based)."""

from datetime import datetime

import pytest

from core.exceptions import ConfigurationMissing, ResourceNotFound
from schemas.production import MachineInfo, MachineStatus
from services.production_summary_service import (
    MachineSpeeds,
    ProductionSummaryService,
    running_minutes_in_window,
)

START = datetime(2026, 3, 10, 7, 0)


def at(hour, minute=0):
    return datetime(2026, 3, 10, hour, minute)


class TestRunningMinutes:
    def test_clipped_to_window(self):
        transitions = [(MachineStatus.RUNNING, at(6, 30)), (MachineStatus.STOPPED, at(7, 20))]
        assert running_minutes_in_window(transitions, START, at(8)) == 20

    def test_open_interval_runs_to_end(self):
        transitions = [(MachineStatus.STOPPED, at(7, 0)), (MachineStatus.RUNNING, at(7, 45))]
        assert running_minutes_in_window(transitions, START, at(8)) == 15

    def test_other_statuses_do_not_count(self):
        transitions = [(MachineStatus.MAINTENANCE, at(7)), (MachineStatus.OFF_SHIFT, at(7, 30))]
        assert running_minutes_in_window(transitions, START, at(8)) == 0


class TestCurrentShift:
    @pytest.mark.asyncio
    async def test_summary_from_history(self, machine_store, shift_clock):
        machine_store.record(1, MachineStatus.RUNNING, at(8, 0))
        machine_store.record(1, MachineStatus.STOPPED, at(8, 30))
        summary = await ProductionSummaryService(machine_store, shift_clock).current_shift(1, at(8, 30))
        assert summary.estimated_production == 300
        assert summary.running_minutes == 30
        assert summary.efficiency == 33
        assert summary.shift_start == START
        assert summary.target_production == 7200
        assert not summary.is_running

    @pytest.mark.asyncio
    async def test_previous_shift_history_is_excluded(self, machine_store, shift_clock):
        machine_store.record(1, MachineStatus.RUNNING, at(18, 0))
        machine_store.record(1, MachineStatus.STOPPED, at(18, 59))
        summary = await ProductionSummaryService(machine_store, shift_clock).current_shift(1, at(19, 30))
        assert summary.estimated_production == 0
        assert summary.shift_start == at(19)

    @pytest.mark.asyncio
    async def test_unknown_machine(self, machine_store, shift_clock):
        with pytest.raises(ResourceNotFound):
            await ProductionSummaryService(machine_store, shift_clock).current_shift(42, at(8))


class TestMachineSpeeds:
    @pytest.mark.asyncio
    async def test_speed_is_cached(self, machine_store):
        speeds = MachineSpeeds(machine_store)
        assert await speeds.speed_for(1) == 10.0
        machine_store.machines[1] = MachineInfo(id=1, name="Press 1", production_speed=20.0)
        assert await speeds.speed_for(1) == 10.0
        speeds.forget(1)
        assert await speeds.speed_for(1) == 20.0

    @pytest.mark.asyncio
    async def test_missing_speed_raises(self, machine_store):
        machine_store.add(MachineInfo(id=2, name="Lathe", production_speed=0))
        with pytest.raises(ConfigurationMissing):
            await MachineSpeeds(machine_store).speed_for(2)
