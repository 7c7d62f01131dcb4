"""
Base error hierarchy of the Jan Seva platform.

Service code raises these; ``utils.exception_handler`` turns them into API
responses. Subclasses pick their HTTP status, machine readable code and
default message through class attributes.
"""

from typing import Any

from django.utils.translation import gettext_lazy as _
from rest_framework import status


class JanSevaError(Exception):
    """
    Base exception for all Jan Seva custom exceptions.

    Attributes:
        message: Human readable error message
        detail: Additional error details
        status_code: HTTP status code for API responses
        code: Machine readable error code
        retryable: Whether the caller may safely retry the failed operation
    """

    code = "error"
    retryable = False
    default_message = _("An error occurred")
    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = None, detail: Any = None, status_code: int = None):
        self.message = message if message else self.default_message
        self.detail = detail
        self.status_code = status_code or self.default_status_code
        super().__init__(self.message)

    def __str__(self):
        return str(self.message)

    def to_dict(self):
        """Payload rendered by the API for this error."""
        error_dict = {
            "error": self.code,
            "message": str(self.message),
            "retryable": self.retryable,
        }
        if self.detail:
            error_dict["detail"] = self.detail
        return error_dict


class ValidationError(JanSevaError):
    code = "validation_error"
    default_message = _("Validation error")


class PermissionDeniedError(JanSevaError):
    code = "permission_denied"
    default_message = _("Permission denied")
    default_status_code = status.HTTP_403_FORBIDDEN


class ResourceNotFoundError(JanSevaError):
    code = "not_found"
    default_message = _("Resource not found")
    default_status_code = status.HTTP_404_NOT_FOUND


class ConflictError(JanSevaError):
    """The request conflicts with the current state of the resource."""

    code = "conflict"
    default_message = _("Request conflicts with current state")
    default_status_code = status.HTTP_409_CONFLICT
