from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Roles an authenticated actor can hold."""

    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


STAFF_ROLES = frozenset({Role.AGENT, Role.ADMIN})


@dataclass(frozen=True, slots=True)
class Actor:
    """Identity with a role; deactivated actors can no longer authenticate or be assigned."""

    id: str
    role: Role
    name: str | None = None
    active: bool = True

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
