"""Role and scope rules deciding what an actor may do with a ticket."""

from __future__ import annotations

from enum import Enum

from helpdesk.users.models import Actor, Role

from .models import Ticket, TicketQuery
from .state import WORKABLE_STATUSES


class TicketAction(str, Enum):
    READ = "read"
    COMMENT = "comment"
    UPDATE = "update"
    ASSIGN = "assign"


_ALL_ACTIONS = frozenset(TicketAction)
_NO_ACTIONS: frozenset[TicketAction] = frozenset()
_REQUESTER_ACTIONS = frozenset({TicketAction.READ, TicketAction.COMMENT})


class PermissionEvaluator:
    """Pure permission matrix; never raises, callers decide how to report denials."""

    def allowed_actions(self, actor: Actor, ticket: Ticket) -> frozenset[TicketAction]:
        if actor.role is Role.ADMIN:
            return _ALL_ACTIONS
        if actor.role is Role.AGENT:
            if ticket.assigned_to is None or ticket.assigned_to == actor.id:
                return _ALL_ACTIONS
            return _NO_ACTIONS
        if ticket.created_by == actor.id:
            return _REQUESTER_ACTIONS
        return _NO_ACTIONS

    def is_allowed(self, actor: Actor, ticket: Ticket, action: TicketAction) -> bool:
        return action in self.allowed_actions(actor, ticket)

    def can_create(self, actor: Actor) -> bool:
        return actor.role in (Role.USER, Role.AGENT, Role.ADMIN)

    def list_scope(self, actor: Actor, *, search: str | None, offset: int, limit: int) -> TicketQuery:
        """Listing filter matching the read rules for ``actor``."""

        if actor.role is Role.ADMIN:
            return TicketQuery(search=search, offset=offset, limit=limit)
        if actor.role is Role.AGENT:
            return TicketQuery(
                agent_id=actor.id,
                unassigned_statuses=WORKABLE_STATUSES,
                search=search,
                offset=offset,
                limit=limit,
            )
        return TicketQuery(created_by=actor.id, search=search, offset=offset, limit=limit)
