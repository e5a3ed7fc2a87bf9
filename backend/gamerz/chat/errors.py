"""Error taxonomy for the real-time room messaging layer.

Every error carries a machine-readable ``kind`` that is sent to clients in
``{"type": "error", "kind": ...}`` frames, and an HTTP status used when the
same error surfaces through a REST route.

    AuthenticationError   identity could not be resolved
    PermissionDenied      valid identity, approval status not sufficient
    PersistenceError      message store unavailable or rejected the write
    DeliveryFailure       one peer channel could not take an event (internal)
    NotFound              unknown room, or a reference that is no longer valid
    InvalidMessage        malformed request payload
    InvalidTransition     illegal lifecycle state change (programming error)
"""
from typing import Optional


class ChatError(Exception):
    """Base class for all errors raised by the chat layer."""

    kind: str = "chat_error"
    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_frame(self) -> dict:
        """Render the error as a WebSocket error frame."""
        return {"type": "error", "kind": self.kind, "error": self.message}


class AuthenticationError(ChatError):
    kind = "authentication_error"
    status_code = 401


class IdentityResolutionError(AuthenticationError):
    """Raised when a connection is registered without a verified identity."""


class PermissionDenied(ChatError):
    """The identity is valid but its approval status does not allow the action.

    ``reason`` lets clients tell a waiting state (``not_approved``) apart from
    a blocked one (``blocked``).
    """

    kind = "permission_denied"
    status_code = 403

    NOT_APPROVED = "not_approved"
    BLOCKED = "blocked"

    def __init__(self, message: str = "", reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason

    def to_frame(self) -> dict:
        frame = super().to_frame()
        if self.reason:
            frame["reason"] = self.reason
        return frame


class PersistenceError(ChatError):
    kind = "persistence_error"
    status_code = 503


class DeliveryFailure(ChatError):
    """A single peer connection could not receive an event.

    Contained inside the broadcast engine; never surfaced to a sender.
    """

    kind = "delivery_failure"


class NotFound(ChatError):
    kind = "not_found"
    status_code = 404


class InvalidMessage(ChatError):
    kind = "invalid_message"
    status_code = 400


class InvalidTransition(ChatError):
    kind = "invalid_transition"


# WebSocket close codes (application range 4000-4999) for final rejections.
# Clients must not reconnect after either of them.
CLOSE_AUTH_FAILED = 4401
CLOSE_ACCOUNT_BLOCKED = 4403
