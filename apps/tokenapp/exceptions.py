"""
Error taxonomy of the queue scheduler.

``ConcurrencyConflict`` and ``Timeout`` are safe to retry; every other error
is terminal for the invocation and should be shown to the operator.
"""

from django.utils.translation import gettext_lazy as _
from rest_framework import status

from utils.exceptions import (
    ConflictError,
    JanSevaError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationError,
)


class InvalidArgument(ValidationError):
    """Malformed input, such as a queue key without an office id."""

    code = "invalid_argument"


class NotFound(ResourceNotFoundError):
    """Unknown token id or token number."""

    code = "not_found"

    def __init__(self, token_ref=None):
        self.token_ref = token_ref
        message = _("Token not found")
        if token_ref:
            message = f"Token '{token_ref}' not found"
        super().__init__(message)


class InvalidTransition(ConflictError):
    """The requested operation is not legal from the token's current status."""

    code = "invalid_transition"

    def __init__(self, token_ref, current_status, operation):
        self.token_ref = token_ref
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} token '{token_ref}' in status '{current_status}'",
            detail={"status": current_status, "operation": operation},
        )


class StaleDate(JanSevaError):
    """The token's appointment date does not match the current service date."""

    code = "stale_date"

    def __init__(self, appointment_date, service_date, token_ref=None):
        self.appointment_date = appointment_date
        self.service_date = service_date
        if token_ref:
            message = f"Token '{token_ref}' is for {appointment_date}, not {service_date}"
        else:
            message = f"Appointment date {appointment_date} is before {service_date}"
        super().__init__(
            message,
            detail={
                "appointment_date": str(appointment_date),
                "service_date": str(service_date),
            },
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )


class PermissionScope(PermissionDeniedError):
    """The caller's office/department assignment does not cover the queue key."""

    code = "permission_scope"


class ConcurrencyConflict(ConflictError):
    """A conditional update lost a race, or the queue lock could not be taken."""

    code = "concurrency_conflict"
    retryable = True


class TokenNumberTaken(ConcurrencyConflict):
    """Raised by a store when a token number is already in use."""

    code = "token_number_taken"

    def __init__(self, token_number):
        self.token_number = token_number
        super().__init__(f"Token number '{token_number}' is already in use")


class Timeout(JanSevaError):
    """The caller's deadline passed before the operation could commit."""

    code = "timeout"
    retryable = True

    def __init__(self, operation, timeout_seconds):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_seconds} seconds",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        )
