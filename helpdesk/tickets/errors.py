from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""

    code = "TICKET_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        return payload


class FieldRequiredError(TicketServiceError):
    """Raised when a mandatory field is missing or blank."""

    code = "FIELD_REQUIRED"


class FieldInvalidError(TicketServiceError):
    """Raised when a field is present but not acceptable."""

    code = "FIELD_INVALID"


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""

    code = "TICKET_NOT_FOUND"


class AccessDeniedError(TicketServiceError):
    """Raised when the actor's role or scope does not permit the action."""

    code = "ACCESS_DENIED"


class StaleUpdateError(TicketServiceError):
    """Raised when the presented version is not the stored one."""

    code = "STALE_UPDATE"


class InvalidAssigneeError(TicketServiceError):
    code = "INVALID_ASSIGNEE"


class InvalidParentCommentError(TicketServiceError):
    code = "INVALID_PARENT_COMMENT"


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when attempting to transition to an invalid state."""

    code = "INVALID_TRANSITION"


class DuplicateIdempotencyKeyError(RuntimeError):
    """Raised by repositories when another ticket already holds the key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Idempotency key already used: {key}")
        self.key = key
