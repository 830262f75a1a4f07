from __future__ import annotations


class UserServiceError(RuntimeError):
    """Base error for user administration."""

    code = "USER_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        return payload


class UserNotFoundError(UserServiceError):
    code = "USER_NOT_FOUND"


class InvalidRoleError(UserServiceError):
    """Raised when a role change names an unknown role."""

    code = "INVALID_ROLE"


class SelfDeactivationError(UserServiceError):
    code = "SELF_DEACTIVATION"
