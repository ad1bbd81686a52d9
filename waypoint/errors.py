"""Error types raised by the controller and the workflow client."""

from __future__ import annotations


class WaypointError(Exception):
    """Base error carrying a stable code and a human-readable message."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InputValidationError(WaypointError):
    """Operator input rejected before anything was dispatched.

    Args:
        message: Inline error text for the operator.
        field: Name of the offending input ("message" or "repository_ref").
    """

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "field": self.field}


class TransportError(WaypointError):
    """Network, HTTP or protocol failure talking to the workflow API."""

    code = "TRANSPORT_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
