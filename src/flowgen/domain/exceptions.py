"""Exception hierarchy for the FlowGen backend.

Expected business conditions (worker failure replies, timeouts, poison or
duplicate messages) are modelled as outcomes, not exceptions. Only the
conditions below propagate.
"""

from http import HTTPStatus
from typing import Any, Dict, Optional


class FlowgenException(Exception):
    """Base exception class for the FlowGen backend."""

    def __init__(
        self,
        message: str,
        status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = int(status_code)
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class BrokerUnavailableError(FlowgenException):
    """Raised when the message broker cannot be reached or refuses an operation."""

    def __init__(
        self,
        message: str = "Message broker is unavailable",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            error_code="BROKER_UNAVAILABLE",
            details=details,
        )


class JobValidationError(FlowgenException):
    """Raised when a job request is rejected before touching the broker."""

    def __init__(self, message: str, field_errors: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None,
        )


class ResourceNotFoundError(FlowgenException):
    """Raised when a referenced record does not exist."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource} '{resource_id}' not found",
            status_code=HTTPStatus.NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
            details={"resource": resource, "resource_id": str(resource_id)},
        )


class AccessDeniedError(FlowgenException):
    """Raised when a caller references a record it does not own."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            status_code=HTTPStatus.FORBIDDEN,
            error_code="ACCESS_DENIED",
        )


class ResourceConflictError(FlowgenException):
    """Raised when a record would clash with an existing one."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=HTTPStatus.CONFLICT,
            error_code="RESOURCE_CONFLICT",
            details=details,
        )


class CorrelationCollisionError(RuntimeError):
    """A correlation id was registered twice. Never expected; not handled."""
