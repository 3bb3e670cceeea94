"""Floor Monitor — Production Accounting Schemas.

Value objects shared by the tracker, estimator, reconciliation loop,
threshold evaluator and the API.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def plant_local(value: datetime) -> datetime:
    """Convert an aware instant to naive plant-local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class MachineStatus(str, Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    MAINTENANCE = "MAINTENANCE"
    OFF_SHIFT = "OFF_SHIFT"

    @classmethod
    def parse(cls, value: str) -> "MachineStatus":
        """Accept lower-case transport values such as ``running``."""
        return cls(str(value).strip().upper())


class MachineEventType(str, Enum):
    OPERATION_STARTED = "machine:operation-started"
    OPERATION_ENDED = "machine:operation-ended"
    STATUS_CHANGED = "machine:status:changed"
    PRODUCTION_UPDATE = "production:update"


class MachineEvent(BaseModel):
    """Inbound transport event placed on the tracker queue."""

    type: MachineEventType
    machine_id: int
    timestamp: datetime
    status: Optional[MachineStatus] = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def to_plant_local(cls, v: datetime) -> datetime:
        return plant_local(v)


class MachineRunState(BaseModel):
    machine_id: int
    status: MachineStatus
    status_changed_at: datetime


class ProductionSnapshot(BaseModel):
    """Per-machine, per-shift production accumulator.

    ``accumulated_production`` never decreases while ``shift_start`` is
    unchanged. ``last_estimate_at`` marks how far running time has already
    been converted to units, so intervals are never counted twice.
    """

    machine_id: int
    shift_start: datetime
    accumulated_production: float = Field(default=0.0, ge=0)
    accumulated_running_minutes: float = Field(default=0.0, ge=0)
    last_estimate_at: Optional[datetime] = None
    last_calculated_production: float = Field(default=0.0, ge=0)


class ProductionReading(BaseModel):
    """What the dashboard shows for one machine at one instant."""

    machine_id: int
    current_production: int
    running_minutes: float
    efficiency: int
    target_production: int
    is_running: bool
    shift_start: datetime


class ShiftSummary(BaseModel):
    """Server-side aggregate for the current shift."""

    machine_id: Optional[int] = None
    estimated_production: float = 0
    running_minutes: float = 0
    efficiency: int = 0
    shift_start: datetime
    is_running: bool = False
    target_production: Optional[int] = None

    @field_validator("shift_start")
    @classmethod
    def to_plant_local(cls, v: datetime) -> datetime:
        return plant_local(v)


class ProductionCorrection(BaseModel):
    """Operator-entered correction that may lower the count."""

    machine_id: int
    value: float = Field(ge=0)
    corrected_by: str = Field(min_length=1)
    reason: Optional[str] = None


class MergeResult(BaseModel):
    machine_id: int
    fetched: bool
    production: float
    running_minutes: float
    error: Optional[str] = None


class ThresholdConfig(BaseModel):
    """Per-machine popup/alert thresholds from the machine production config."""

    popup_threshold: Optional[int] = None
    alert_threshold: Optional[int] = None
    enable_popups: bool = True
    enable_alerts: bool = True

    @property
    def popups_enabled(self) -> bool:
        return self.enable_popups and bool(self.popup_threshold) and self.popup_threshold > 0

    @property
    def alerts_enabled(self) -> bool:
        return self.enable_alerts and bool(self.alert_threshold) and self.alert_threshold > 0


class MachineInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: Optional[str] = None
    production_speed: Optional[float] = None
    production_config: dict[str, Any] = Field(default_factory=dict)

    @property
    def thresholds(self) -> ThresholdConfig:
        return ThresholdConfig(**(self.production_config or {}))


class ProductionCounter(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    machine_id: int
    day: date
    count: int = 0


class ProductionPopup(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_id: int
    day: date
    production_count: int
    threshold: int
    message: str
    is_active: bool = True
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductionAlert(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_id: int
    day: date
    production_count: int
    threshold: int
    alert_type: str = "PRODUCTION_THRESHOLD_EXCEEDED"
    severity: str = "HIGH"
    message: str
    target_roles: list[str] = Field(default_factory=list)
    is_active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ThresholdOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DISABLED = "disabled"


class ThresholdResult(BaseModel):
    """Outcome of one threshold evaluation for a machine."""

    machine_id: int
    count: int
    popup: ThresholdOutcome = ThresholdOutcome.DISABLED
    alert: ThresholdOutcome = ThresholdOutcome.DISABLED
    popup_id: Optional[int] = None
    alert_id: Optional[int] = None


class IncrementRequest(BaseModel):
    quantity: int = Field(default=1, ge=1)


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = Field(min_length=1)
