"""Exception taxonomy for the messaging core.

Every error carries a stable machine-readable ``code`` so the REST layer can
map it to an HTTP status and the WebSocket layer can put it in a
``send_failed`` / ``error`` payload without string matching.
"""


class MessagingError(Exception):
    """Base class for all messaging errors."""

    code = "messaging_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(MessagingError):
    """Empty content, oversized content, or sender == receiver."""

    code = "validation_error"


class NotFoundError(MessagingError):
    """A message identifier that does not exist."""

    code = "not_found"


class PermissionDenied(MessagingError):
    """The caller is not allowed to act on this message (e.g. not its receiver)."""

    code = "forbidden"


class StorageUnavailable(MessagingError):
    """The durable store cannot be reached or rejected the operation."""

    code = "storage_unavailable"
