"""Custom exceptions for the messaging core.

Every error carries two messages:
- an internal message for logs
- a user_message that is safe to surface to the initiating action
"""


class ChatError(Exception):
    """Base exception for messaging core errors."""

    def __init__(self, message: str, user_message: str | None = None):
        """
        Initialize chat error.

        Args:
            message: Internal error message for logging/debugging
            user_message: Safe message to show to users (defaults to generic message)
        """
        super().__init__(message)
        self.user_message = user_message or "An error occurred while processing your request."


class HandleConflictError(ChatError):
    """Handle is already registered to another owner. Terminal."""

    def __init__(self, handle: str, user_message: str | None = None):
        super().__init__(
            f"Handle {handle!r} is already claimed",
            user_message or "Handle is already taken.",
        )
        self.handle = handle


class NotFoundError(ChatError):
    """Referenced user or conversation does not exist."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(
            message,
            user_message or "The requested item could not be found.",
        )


class StoreUnavailableError(ChatError):
    """Transient failure talking to the document store (or the blob host)."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(
            message,
            user_message or "The service is temporarily unavailable. Please try again.",
        )


class ChatValidationError(ChatError):
    """Request rejected before any write was attempted."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message, user_message or message)


class PermissionDeniedError(ChatValidationError):
    """Caller lacks the owner/admin role a membership change requires."""

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(
            message,
            user_message or "You are not allowed to do that.",
        )


class PreconditionFailed(Exception):
    """A conditional store write found one of its guarded paths occupied."""

    def __init__(self, path: str):
        super().__init__(f"Precondition failed: {path} already exists")
        self.path = path
