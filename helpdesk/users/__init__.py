"""Identities, roles and the user directory."""

from .directory import InMemoryUserDirectory, PostgresUserDirectory, UserDirectory
from .errors import InvalidRoleError, SelfDeactivationError, UserNotFoundError, UserServiceError
from .models import STAFF_ROLES, Actor, Role
from .service import UserService

__all__ = [
    "Actor",
    "InMemoryUserDirectory",
    "InvalidRoleError",
    "PostgresUserDirectory",
    "Role",
    "STAFF_ROLES",
    "SelfDeactivationError",
    "UserDirectory",
    "UserNotFoundError",
    "UserService",
    "UserServiceError",
]
