"""API error types shared by the chat and dispute aggregates."""

from __future__ import annotations

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.views import exception_handler


class ConflictError(APIException):
    """The requested change conflicts with the aggregate's current state."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The resource is in a conflicting state."
    default_code = "conflict"


class InvalidTransition(ConflictError):
    """A workflow status change that the state machine does not allow."""

    default_detail = "This status change is not allowed."
    default_code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move from '{current}' to '{requested}'.")


def envelope_exception_handler(exc, context):
    """Run DRF's handler and tag the body with success=false."""
    response = exception_handler(exc, context)
    if response is None:
        return None
    if isinstance(response.data, dict):
        response.data = {"success": False, **response.data}
    else:
        response.data = {"success": False, "detail": response.data}
    return response
