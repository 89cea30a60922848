"""Exceptions raised by the messaging services.

Endpoints translate these into HTTP responses; nothing below the API layer
knows about status codes.
"""


class MessagingError(RuntimeError):
    """Base exception for messaging failures that are the caller's fault."""


class MessageValidationError(MessagingError):
    """Raised when a message is malformed or exceeds a configured bound."""


class NotFoundError(MessagingError):
    """Raised when a referenced user or message does not exist."""


class ForbiddenError(MessagingError):
    """Raised when the caller is not allowed to act on a message."""
