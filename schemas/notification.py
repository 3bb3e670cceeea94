"""Floor Monitor — Notification Schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return PRIORITY_ORDER[self]

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """Parse a priority name, accepting the legacy info/warning/critical.

        Unknown values rank as LOW.
        """
        if isinstance(value, Priority):
            return value
        name = str(value or "").strip().upper()
        name = LEGACY_PRIORITY_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.LOW


PRIORITY_ORDER = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}

LEGACY_PRIORITY_ALIASES = {
    "INFO": "LOW",
    "WARNING": "MEDIUM",
    "CRITICAL": "URGENT",
}


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    PUSH = "push"


class Role(str, Enum):
    OPERATOR = "OPERATOR"
    LEADER = "LEADER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class NotificationStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class UserContact(BaseModel):
    """Read-only view of a user from the directory."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = Role.OPERATOR.value
    is_active: bool = True


class AlertChannelPreference(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    email: bool = True
    sms: bool = False
    whatsapp: bool = False
    sound: bool = True
    min_priority: Priority = Priority.LOW

    @field_validator("min_priority", mode="before")
    @classmethod
    def parse_min_priority(cls, v: Any) -> Priority:
        return Priority.parse(v)


class ChannelPreferenceUpdate(BaseModel):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    whatsapp: Optional[bool] = None
    sound: Optional[bool] = None
    min_priority: Optional[str] = None


class AlertRequest(BaseModel):
    """A request to raise and fan out one alert."""

    machine_id: Optional[int] = None
    type: str
    priority: Priority = Priority.MEDIUM
    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    target_roles: list[str] = Field(default_factory=list)
    user_ids: list[int] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> Priority:
        return Priority.parse(v)


class StoredAlert(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_id: Optional[int] = None
    type: str
    priority: Priority
    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "active"
    created_at: datetime


class NotificationLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    alert_id: int
    user_id: int
    channels: list[str] = Field(default_factory=list)
    status: NotificationStatus
    error_message: Optional[str] = None
    sent_at: datetime


class SendResult(BaseModel):
    success: bool
    error: Optional[str] = None


class DispatchResult(BaseModel):
    success: bool
    alert_id: Optional[int] = None
    reason: Optional[str] = None
    existing_alert_id: Optional[int] = None
    notified_users: int = 0
    skipped_users: int = 0
    failed_users: int = 0
