"""ORM models. Importing this package registers every table on Base.metadata."""

from db.models.machine import Machine, MachineStatusHistory, User
from db.models.notification import Alert, AlertChannel, NotificationLog
from db.models.production import ProductionAlert, ProductionCounter, ProductionPopup

__all__ = [
    "Alert",
    "AlertChannel",
    "Machine",
    "MachineStatusHistory",
    "NotificationLog",
    "ProductionAlert",
    "ProductionCounter",
    "ProductionPopup",
    "User",
]
