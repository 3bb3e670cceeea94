"""Floor Monitor — Service Layer.

Production accounting and alerting logic, kept free of transport and
storage details. Stores and senders are passed in explicitly.

Services:
    - ShiftClock: shift boundaries and elapsed shift time
    - RunStateTracker: per-machine status state machine
    - ProductionEstimator: running time to produced units, per-shift snapshot
    - ReconciliationService: max-of merge with the server summary
    - ProductionSummaryService: server-side current-shift aggregate
    - ThresholdEvaluator / ProductionCounterService: popups and alerts
    - NotificationDispatcher: deduplicated, priority-routed delivery

Usage:
    from services import ProductionEstimator, ShiftClock
    from edge import SnapshotStore

    estimator = ProductionEstimator(SnapshotStore(), ShiftClock())
"""

from services.notification_dispatcher import NotificationDispatcher
from services.production_counter_service import ProductionCounterService
from services.production_estimator import ProductionEstimator
from services.production_summary_service import MachineSpeeds, ProductionSummaryService
from services.reconciliation import HttpSummaryClient, ReconciliationService
from services.run_state_tracker import RunStateTracker
from services.shift_clock import ShiftClock
from services.threshold_evaluator import ThresholdEvaluator

__all__ = [
    "HttpSummaryClient",
    "MachineSpeeds",
    "NotificationDispatcher",
    "ProductionCounterService",
    "ProductionEstimator",
    "ProductionSummaryService",
    "ReconciliationService",
    "RunStateTracker",
    "ShiftClock",
    "ThresholdEvaluator",
]
