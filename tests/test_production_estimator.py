"""Production estimator tests: accumulation, ticks, shift rollover and the monotonic guard."""

from datetime import datetime

from schemas.production import ProductionCorrection
from services.production_estimator import compute_efficiency, compute_target, units_for


def at(hour, minute=0, second=0, day=10):
    return datetime(2026, 3, day, hour, minute, second)


class TestPureHelpers:
    def test_efficiency_zero_at_shift_start(self):
        assert compute_efficiency(0, 0) == 0
        assert compute_efficiency(5, -1) == 0

    def test_efficiency_is_clamped(self):
        assert compute_efficiency(120, 60) == 100
        assert compute_efficiency(30, 90) == 33

    def test_target_uses_full_shift(self):
        assert compute_target(10, 720) == 7200
        assert compute_target(None, 720) == 0

    def test_units_are_floored(self):
        assert units_for(0.15, 10) == 1
        assert units_for(30, 10) == 300
        assert units_for(-5, 10) == 0


class TestAccumulate:
    def test_half_hour_run_scenario(self, estimator):
        """RUNNING 08:00, STOPPED 08:30 at 10/min: 300 units, efficiency 33 at 08:30."""
        snapshot = estimator.accumulate(1, at(8, 0), at(8, 30), 10)
        assert snapshot.accumulated_production == 300
        assert snapshot.accumulated_running_minutes == 30

        reading = estimator.reading(1, at(8, 30), 10, is_running=False)
        assert reading.current_production == 300
        assert reading.efficiency == 33
        assert reading.target_production == 7200

    def test_out_of_order_interval_adds_nothing(self, estimator):
        estimator.accumulate(1, at(8, 0), at(8, 30), 10)
        snapshot = estimator.accumulate(1, at(8, 30), at(8, 10), 10)
        assert snapshot.accumulated_production == 300
        assert snapshot.last_estimate_at == at(8, 30)

    def test_overlapping_interval_not_counted_twice(self, estimator):
        estimator.accumulate(1, at(8, 0), at(8, 30), 10)
        snapshot = estimator.accumulate(1, at(8, 20), at(8, 40), 10)
        assert snapshot.accumulated_production == 400

    def test_production_never_decreases(self, estimator, snapshot_store):
        before = estimator.accumulate(1, at(8, 0), at(8, 30), 10)
        lower = before.model_copy(update={"accumulated_production": 120})
        kept = estimator.commit(before, lower)
        assert kept.accumulated_production == 300
        assert snapshot_store.get(1).accumulated_production == 300


class TestShiftRollover:
    def test_reset_just_after_boundary(self, estimator):
        estimator.accumulate(1, at(18, 0), at(18, 30), 10)
        snapshot = estimator.accumulate(1, at(18, 50), at(19, 0, 1), 10)
        assert snapshot.shift_start == at(19, 0)
        assert snapshot.accumulated_production == 0

    def test_reset_happens_once(self, estimator):
        estimator.accumulate(1, at(18, 0), at(18, 30), 10)
        estimator.accumulate(1, at(18, 50), at(19, 0, 1), 10)
        snapshot = estimator.accumulate(1, at(19, 0, 1), at(19, 10, 1), 10)
        assert snapshot.shift_start == at(19, 0)
        assert snapshot.accumulated_production == 100

    def test_late_event_for_closed_shift_is_ignored(self, estimator, snapshot_store):
        estimator.accumulate(1, at(19, 0), at(19, 10), 10)
        assert estimator.accumulate(1, at(18, 0), at(18, 10), 10) is None
        assert snapshot_store.get(1).accumulated_production == 100


class TestTick:
    def test_tick_converts_whole_units(self, estimator):
        snapshot = estimator.tick(1, at(8, 0), at(8, 0, 30), 10)
        assert snapshot.accumulated_production == 5
        assert snapshot.last_estimate_at == at(8, 0, 30)

    def test_tick_at_most_once_per_second(self, estimator, monotonic):
        estimator.tick(1, at(8, 0), at(8, 0, 30), 10)
        assert estimator.tick(1, at(8, 0), at(8, 0, 36), 10) is None
        monotonic.advance(1.0)
        snapshot = estimator.tick(1, at(8, 0), at(8, 0, 36), 10)
        assert snapshot.accumulated_production == 6

    def test_shift_rollover_keeps_tick_gate(self, estimator, monotonic):
        estimator.tick(1, at(18, 0), at(18, 59, 50), 10)
        monotonic.advance(1.0)
        rolled = estimator.tick(1, at(18, 0), at(19, 0, 30), 10)
        assert rolled.shift_start == at(19)
        assert rolled.accumulated_production == 5
        assert estimator.tick(1, at(18, 0), at(19, 0, 36), 10) is None

    def test_fractional_remainder_is_carried(self, estimator, monotonic):
        first = estimator.tick(1, at(8, 0), at(8, 0, 9), 10)
        assert first.accumulated_production == 1
        assert first.last_estimate_at == at(8, 0, 6)
        monotonic.advance(1.0)
        second = estimator.tick(1, at(8, 0), at(8, 0, 12), 10)
        assert second.accumulated_production == 2

    def test_status_change_after_ticks_does_not_double_count(self, estimator, monotonic):
        estimator.tick(1, at(8, 0), at(8, 0, 30), 10)
        monotonic.advance(1.0)
        estimator.tick(1, at(8, 0), at(8, 0, 36), 10)
        snapshot = estimator.accumulate(1, at(8, 0), at(8, 1), 10)
        assert snapshot.accumulated_production == 10
        assert round(snapshot.accumulated_running_minutes, 6) == 1.0

    def test_reading_includes_running_tail(self, estimator):
        estimator.tick(1, at(8, 0), at(8, 0, 30), 10)
        reading = estimator.reading(1, at(8, 1), 10, is_running=True, running_since=at(8, 0))
        assert reading.current_production == 5
        assert reading.running_minutes == 1.0
        assert reading.is_running


class TestCorrection:
    def test_correction_lowers_count(self, estimator):
        estimator.accumulate(1, at(8, 0), at(8, 30), 10)
        corrected = estimator.apply_correction(
            ProductionCorrection(machine_id=1, value=50, corrected_by="shift-lead"), now=at(8, 31)
        )
        assert corrected.accumulated_production == 50

    def test_counting_resumes_from_corrected_value(self, estimator):
        estimator.accumulate(1, at(8, 0), at(8, 30), 10)
        estimator.apply_correction(ProductionCorrection(machine_id=1, value=50, corrected_by="lead"), now=at(8, 31))
        snapshot = estimator.accumulate(1, at(8, 40), at(8, 50), 10)
        assert snapshot.accumulated_production == 150
