"""Floor Monitor — Core Exceptions.

Domain-specific exceptions for the service layer. API routes convert
them to HTTP responses; background loops log them and carry on.

Usage:
    from core.exceptions import ResourceNotFound

    popup = await store.get_popup(popup_id)
    if popup is None:
        raise ResourceNotFound("ProductionPopup", popup_id)
"""

from __future__ import annotations

from typing import Any


class FloorMonitorError(Exception):
    """Base exception for all Floor Monitor domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ResourceNotFound(FloorMonitorError):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404 Not Found.
    """

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message, {"resource_type": resource_type, "resource_id": str(resource_id)})


class BusinessRuleViolation(FloorMonitorError):
    """Raised when a business rule is violated.

    Maps to HTTP 409 Conflict.

    Examples:
        - Acknowledging a popup that is already inactive
        - A production correction without an author
    """

    def __init__(self, rule: str, context: dict[str, Any] | None = None):
        self.rule = rule
        self.context = context or {}
        super().__init__(f"Business rule violation: {rule}", {"rule": rule, **self.context})


class ExternalServiceError(FloorMonitorError):
    """A collaborator over the network failed (summary API, channel provider).

    Always recovered locally; never surfaced to operators.
    """

    def __init__(self, service_name: str, original_error: str):
        self.service_name = service_name
        self.original_error = original_error
        super().__init__(
            f"External service '{service_name}' failed: {original_error}",
            {"service": service_name, "error": original_error},
        )


class ConfigurationMissing(FloorMonitorError):
    """No speed or threshold configured for a machine.

    Callers treat it as "feature disabled" rather than as an error.
    """

    def __init__(self, machine_id: Any, setting: str):
        self.machine_id = machine_id
        self.setting = setting
        super().__init__(
            f"Machine {machine_id} has no '{setting}' configured",
            {"machine_id": str(machine_id), "setting": setting},
        )


class ActiveRowConflict(FloorMonitorError):
    """An active popup or alert already exists for the machine and day."""

    def __init__(self, table: str, machine_id: Any, day: Any):
        self.table = table
        self.machine_id = machine_id
        self.day = day
        super().__init__(
            f"Active {table} already exists for machine {machine_id} on {day}",
            {"table": table, "machine_id": str(machine_id), "day": str(day)},
        )


class InvariantViolation(FloorMonitorError):
    """A computed production value would have decreased within a shift."""

    def __init__(self, machine_id: Any, previous: float, attempted: float):
        self.machine_id = machine_id
        self.previous = previous
        self.attempted = attempted
        super().__init__(
            f"Production for machine {machine_id} would decrease from {previous} to {attempted}",
            {"machine_id": str(machine_id), "previous": previous, "attempted": attempted},
        )
