from __future__ import annotations

import logging
from dataclasses import dataclass

from .directory import UserDirectory
from .errors import InvalidRoleError, SelfDeactivationError, UserNotFoundError
from .models import Actor, Role

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UserService:
    """Administrative operations on the user directory.

    Callers gate these on the admin role; the service only enforces the rules
    that depend on the target user.
    """

    directory: UserDirectory

    async def list_users(self) -> list[Actor]:
        return await self.directory.list_users()

    async def list_agents(self) -> list[Actor]:
        """Active agents and admins, i.e. the valid assignees."""

        return await self.directory.list_staff()

    async def change_role(self, user_id: str, role: Role | str, *, actor: Actor) -> Actor:
        try:
            new_role = Role(role)
        except ValueError as exc:
            raise InvalidRoleError("Role must be user, agent, or admin", field="role") from exc

        updated = await self.directory.set_role(user_id, new_role)
        if updated is None:
            raise UserNotFoundError("User not found")
        logger.info("User %s role set to %s by %s", user_id, new_role.value, actor.id)
        return updated

    async def deactivate(self, user_id: str, *, actor: Actor) -> Actor:
        if user_id == actor.id:
            raise SelfDeactivationError("Cannot deactivate your own account")

        updated = await self.directory.deactivate(user_id)
        if updated is None:
            raise UserNotFoundError("User not found")
        logger.info("User %s deactivated by %s", user_id, actor.id)
        return updated
