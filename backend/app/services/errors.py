"""Failure taxonomy shared by the REST and websocket surfaces."""

from __future__ import annotations


class RealtimeError(Exception):
    """Base class for per-action failures reported back to the caller."""

    kind = "error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AccessDenied(RealtimeError):
    kind = "access_denied"
    status_code = 403
    default_message = "You don't have access to this chat room"


class ValidationFailed(RealtimeError):
    kind = "validation_failed"
    status_code = 400
    default_message = "Invalid request"


class NotFound(RealtimeError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class StoreUnavailable(RealtimeError):
    kind = "store_unavailable"
    status_code = 503
    default_message = "Storage is temporarily unavailable"
