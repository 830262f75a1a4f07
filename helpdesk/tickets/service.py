from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime

from helpdesk.core.clock import Clock, SystemClock
from helpdesk.users.directory import UserDirectory
from helpdesk.users.models import STAFF_ROLES, Actor, Role

from .errors import (
    AccessDeniedError,
    DuplicateIdempotencyKeyError,
    FieldInvalidError,
    FieldRequiredError,
    InvalidAssigneeError,
    InvalidParentCommentError,
    InvalidTicketTransitionError,
    StaleUpdateError,
    TicketNotFoundError,
)
from .models import (
    UNSET,
    AssignedDetails,
    Comment,
    CommentAddedDetails,
    CreatedDetails,
    Priority,
    ResolvedComment,
    StatusChangedDetails,
    Ticket,
    TicketCreation,
    TicketDetail,
    TicketPage,
    TimelineDetails,
    TimelineEntry,
    UpdatedDetails,
    _Unset,
)
from .permissions import PermissionEvaluator, TicketAction
from .repository import TicketRepository
from .sla import DEFAULT_SLA_POLICY, SlaPolicy, compute_deadline
from .state import TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def new_timeline_entry(
    ticket_id: str, details: TimelineDetails, *, actor: str | None, timestamp: datetime
) -> TimelineEntry:
    return TimelineEntry(
        id=str(uuid.uuid4()),
        ticket_id=ticket_id,
        action=details.action,
        actor=actor,
        details=details,
        timestamp=timestamp,
    )


def _required_text(value: str | None, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise FieldRequiredError(f"{field_name.capitalize()} is required", field=field_name)
    return text


def _coerce_priority(value: Priority | str | None, *, default: Priority | None = None) -> Priority | None:
    if value is None:
        return default
    try:
        return Priority(value)
    except ValueError as exc:
        allowed = ", ".join(priority.value for priority in Priority)
        raise FieldInvalidError(f"Priority must be one of: {allowed}", field="priority") from exc


def _coerce_status(value: TicketStatus | str) -> TicketStatus:
    try:
        return TicketStatus(value)
    except ValueError as exc:
        raise FieldInvalidError(f"Unknown status: {value}", field="status") from exc


@dataclass(slots=True)
class TicketService:
    """High level orchestration for ticket lifecycle operations.

    Every mutation of a ticket is a single compare-and-swap on its version
    together with the timeline entries it produces. Concurrent writers that
    read the same version race; the loser gets :class:`StaleUpdateError` and
    must re-read. There is no field level merge.
    """

    repository: TicketRepository
    users: UserDirectory
    clock: Clock = field(default_factory=SystemClock)
    sla_policy: SlaPolicy = DEFAULT_SLA_POLICY
    permissions: PermissionEvaluator = field(default_factory=PermissionEvaluator)
    default_page_size: int = 10
    max_page_size: int = 100

    async def ensure_schema(self) -> None:
        await self.repository.ensure_schema()

    async def create_ticket(
        self,
        *,
        title: str,
        description: str,
        actor: Actor,
        priority: Priority | str | None = None,
        idempotency_key: str | None = None,
    ) -> TicketCreation:
        title = _required_text(title, "title")
        description = _required_text(description, "description")
        if len(title) > MAX_TITLE_LENGTH:
            raise FieldInvalidError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters", field="title")
        resolved_priority = _coerce_priority(priority, default=Priority.MEDIUM)
        if not self.permissions.can_create(actor):
            raise AccessDeniedError("You are not allowed to create tickets")

        key = (idempotency_key or "").strip() or None
        if key is not None:
            existing = await self.repository.get_ticket_by_idempotency_key(key)
            if existing is not None:
                logger.info("Idempotent replay of ticket %s", existing.id)
                return TicketCreation(ticket=existing, created=False)

        now = self.clock.now()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            priority=resolved_priority,
            status=TicketStateMachine.initial_state(),
            created_by=actor.id,
            assigned_to=None,
            deadline=compute_deadline(resolved_priority, now, self.sla_policy),
            version=0,
            idempotency_key=key,
            created_at=now,
            updated_at=now,
        )
        entry = new_timeline_entry(ticket.id, CreatedDetails(priority=resolved_priority), actor=actor.id, timestamp=now)
        try:
            stored = await self.repository.create_ticket(ticket, entry)
        except DuplicateIdempotencyKeyError:
            # lost a race with a concurrent create carrying the same key
            existing = await self.repository.get_ticket_by_idempotency_key(key or "")
            if existing is None:
                raise
            logger.info("Idempotent replay of ticket %s after concurrent create", existing.id)
            return TicketCreation(ticket=existing, created=False)

        logger.info("Ticket %s created by %s with priority %s", stored.id, actor.id, resolved_priority.value)
        return TicketCreation(ticket=stored, created=True)

    async def list_tickets(
        self,
        *,
        actor: Actor,
        search: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> TicketPage:
        offset = max(0, offset)
        limit = max(1, min(limit or self.default_page_size, self.max_page_size))
        query = self.permissions.list_scope(actor, search=(search or "").strip() or None, offset=offset, limit=limit)
        return await self.repository.list_tickets(query)

    async def get_ticket(self, ticket_id: str, *, actor: Actor) -> TicketDetail:
        ticket = await self._load(ticket_id)
        if not self.permissions.is_allowed(actor, ticket, TicketAction.READ):
            raise AccessDeniedError(self._denial_message(actor, "view"))

        comments = await self.repository.list_comments(ticket_id)
        if not actor.is_staff:
            comments = [comment for comment in comments if not comment.is_internal]
        by_id = {comment.id: comment for comment in comments}
        resolved = [
            ResolvedComment(comment=comment, parent=by_id.get(comment.parent_id) if comment.parent_id else None)
            for comment in comments
        ]
        timeline = await self.repository.list_timeline(ticket_id)
        return TicketDetail(ticket=ticket, comments=resolved, timeline=timeline)

    async def update_ticket(
        self,
        ticket_id: str,
        *,
        version: int,
        actor: Actor,
        status: TicketStatus | str | None = None,
        assigned_to: str | None | _Unset = UNSET,
        priority: Priority | str | None = None,
    ) -> Ticket:
        current = await self._load(ticket_id)
        if current.version != version:
            logger.warning(
                "Stale update on ticket %s: presented version %s, stored %s", ticket_id, version, current.version
            )
            raise StaleUpdateError("Ticket has been modified by another user. Please refresh and try again.")

        if actor.role is Role.USER:
            raise AccessDeniedError("Users cannot update tickets")
        if not self.permissions.is_allowed(actor, current, TicketAction.UPDATE):
            raise AccessDeniedError(self._denial_message(actor, "update"))

        now = self.clock.now()
        updated = replace(current, version=current.version + 1, updated_at=now)
        changes: list[TimelineDetails] = []

        if status is not None:
            new_status = _coerce_status(status)
            if new_status != current.status:
                try:
                    TicketStateMachine.assert_transition(current.status, new_status)
                except ValueError as exc:
                    raise InvalidTicketTransitionError(str(exc), field="status") from exc
                updated.status = new_status
                changes.append(StatusChangedDetails(old_status=current.status, new_status=new_status))

        if not isinstance(assigned_to, _Unset):
            target = (assigned_to or "").strip() or None
            if target != current.assigned_to:
                if not self.permissions.is_allowed(actor, current, TicketAction.ASSIGN):
                    raise AccessDeniedError(self._denial_message(actor, "assign"))
                if target is not None:
                    await self._check_assignee(target)
                updated.assigned_to = target
                changes.append(AssignedDetails(assigned_to=target, previous_assignee=current.assigned_to))

        new_priority = _coerce_priority(priority)
        if new_priority is not None and new_priority != current.priority:
            updated.priority = new_priority
            changes.append(UpdatedDetails(old_priority=current.priority, new_priority=new_priority))

        entries = [new_timeline_entry(ticket_id, details, actor=actor.id, timestamp=now) for details in changes]
        stored = await self.repository.compare_and_swap(updated, expected_version=version, entries=entries)
        if stored is None:
            logger.warning("Lost concurrent update race on ticket %s at version %s", ticket_id, version)
            raise StaleUpdateError("Ticket has been modified by another user. Please refresh and try again.")

        logger.info(
            "Ticket %s updated by %s to version %s (%s)",
            ticket_id,
            actor.id,
            stored.version,
            ", ".join(details.action.value for details in changes) or "no field changes",
        )
        return stored

    async def add_comment(
        self,
        ticket_id: str,
        *,
        content: str,
        actor: Actor,
        parent_id: str | None = None,
        is_internal: bool = False,
    ) -> Comment:
        ticket = await self._load(ticket_id)
        if not self.permissions.is_allowed(actor, ticket, TicketAction.COMMENT):
            raise AccessDeniedError(self._denial_message(actor, "comment on"))
        content = _required_text(content, "content")

        parent_id = (parent_id or "").strip() or None
        if parent_id is not None:
            parent = await self.repository.get_comment(parent_id)
            if parent is None or parent.ticket_id != ticket_id:
                raise InvalidParentCommentError("Invalid parent comment", field="parent_id")

        now = self.clock.now()
        comment = Comment(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            author=actor.id,
            content=content,
            parent_id=parent_id,
            is_internal=bool(is_internal) and actor.is_staff,
            created_at=now,
        )
        entry = new_timeline_entry(
            ticket_id,
            CommentAddedDetails(comment_id=comment.id, is_internal=comment.is_internal),
            actor=actor.id,
            timestamp=now,
        )
        stored = await self.repository.add_comment(comment, entry)
        logger.info("Comment %s added to ticket %s by %s", stored.id, ticket_id, actor.id)
        return stored

    async def get_timeline(self, ticket_id: str, *, actor: Actor) -> list[TimelineEntry]:
        ticket = await self._load(ticket_id)
        if not self.permissions.is_allowed(actor, ticket, TicketAction.READ):
            raise AccessDeniedError(self._denial_message(actor, "view"))
        return await self.repository.list_timeline(ticket_id)

    async def _load(self, ticket_id: str) -> Ticket:
        ticket = await self.repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError("Ticket not found")
        return ticket

    async def _check_assignee(self, user_id: str) -> None:
        assignee = await self.users.get_user(user_id)
        if assignee is None or assignee.role not in STAFF_ROLES:
            raise InvalidAssigneeError("Can only assign to agents or admins", field="assigned_to")
        if not assignee.active:
            raise InvalidAssigneeError("Cannot assign to a deactivated user", field="assigned_to")

    @staticmethod
    def _denial_message(actor: Actor, verb: str) -> str:
        if actor.role is Role.USER:
            return f"You can only {verb} your own tickets"
        return f"You can only {verb} tickets assigned to you or unassigned"

