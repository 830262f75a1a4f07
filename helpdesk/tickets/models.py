from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Mapping, Sequence, Union

from .state import TicketStatus


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TimelineAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    ASSIGNED = "assigned"
    STATUS_CHANGED = "status_changed"
    COMMENT_ADDED = "comment_added"
    SLA_BREACHED = "sla_breached"


class _Unset:
    """Marker for optional update fields the caller did not send."""

    _instance: ClassVar[_Unset | None] = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket."""

    id: str
    title: str
    description: str
    priority: Priority
    status: TicketStatus
    created_by: str
    assigned_to: str | None
    deadline: datetime
    version: int
    idempotency_key: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Comment:
    """Message attached to a ticket, optionally replying to another one."""

    id: str
    ticket_id: str
    author: str
    content: str
    parent_id: str | None
    is_internal: bool
    created_at: datetime


# Timeline details: one payload type per action. Persisted payloads use the
# camelCase keys returned by ``to_payload``.


@dataclass(frozen=True, slots=True)
class CreatedDetails:
    action: ClassVar[TimelineAction] = TimelineAction.CREATED

    priority: Priority

    def to_payload(self) -> dict[str, Any]:
        return {"priority": self.priority.value}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CreatedDetails:
        return cls(priority=Priority(payload["priority"]))


@dataclass(frozen=True, slots=True)
class UpdatedDetails:
    action: ClassVar[TimelineAction] = TimelineAction.UPDATED

    old_priority: Priority
    new_priority: Priority

    def to_payload(self) -> dict[str, Any]:
        return {"oldPriority": self.old_priority.value, "newPriority": self.new_priority.value}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> UpdatedDetails:
        return cls(old_priority=Priority(payload["oldPriority"]), new_priority=Priority(payload["newPriority"]))


@dataclass(frozen=True, slots=True)
class AssignedDetails:
    action: ClassVar[TimelineAction] = TimelineAction.ASSIGNED

    assigned_to: str | None
    previous_assignee: str | None

    def to_payload(self) -> dict[str, Any]:
        return {"assignedTo": self.assigned_to, "previousAssignee": self.previous_assignee}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AssignedDetails:
        return cls(assigned_to=payload.get("assignedTo"), previous_assignee=payload.get("previousAssignee"))


@dataclass(frozen=True, slots=True)
class StatusChangedDetails:
    action: ClassVar[TimelineAction] = TimelineAction.STATUS_CHANGED

    old_status: TicketStatus
    new_status: TicketStatus

    def to_payload(self) -> dict[str, Any]:
        return {"oldStatus": self.old_status.value, "newStatus": self.new_status.value}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> StatusChangedDetails:
        return cls(old_status=TicketStatus(payload["oldStatus"]), new_status=TicketStatus(payload["newStatus"]))


@dataclass(frozen=True, slots=True)
class CommentAddedDetails:
    action: ClassVar[TimelineAction] = TimelineAction.COMMENT_ADDED

    comment_id: str
    is_internal: bool

    def to_payload(self) -> dict[str, Any]:
        return {"commentId": self.comment_id, "isInternal": self.is_internal}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> CommentAddedDetails:
        return cls(comment_id=str(payload["commentId"]), is_internal=bool(payload["isInternal"]))


@dataclass(frozen=True, slots=True)
class SlaBreachedDetails:
    action: ClassVar[TimelineAction] = TimelineAction.SLA_BREACHED

    original_deadline: datetime
    breached_at: datetime
    original_status: TicketStatus

    def to_payload(self) -> dict[str, Any]:
        return {
            "originalDeadline": self.original_deadline.isoformat(),
            "breachedAt": self.breached_at.isoformat(),
            "originalStatus": self.original_status.value,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> SlaBreachedDetails:
        return cls(
            original_deadline=datetime.fromisoformat(str(payload["originalDeadline"])),
            breached_at=datetime.fromisoformat(str(payload["breachedAt"])),
            original_status=TicketStatus(payload["originalStatus"]),
        )


TimelineDetails = Union[
    CreatedDetails,
    UpdatedDetails,
    AssignedDetails,
    StatusChangedDetails,
    CommentAddedDetails,
    SlaBreachedDetails,
]

_DETAILS_BY_ACTION: dict[TimelineAction, type] = {
    details_type.action: details_type
    for details_type in (
        CreatedDetails,
        UpdatedDetails,
        AssignedDetails,
        StatusChangedDetails,
        CommentAddedDetails,
        SlaBreachedDetails,
    )
}


def details_from_payload(action: TimelineAction, payload: Mapping[str, Any]) -> TimelineDetails:
    """Rebuild the typed details for ``action`` from a stored payload."""

    return _DETAILS_BY_ACTION[action].from_payload(payload)


@dataclass(frozen=True, slots=True)
class TimelineEntry:
    """Append-only audit record. ``actor`` is ``None`` for system actions."""

    id: str
    ticket_id: str
    action: TimelineAction
    actor: str | None
    details: TimelineDetails
    timestamp: datetime

    def __post_init__(self) -> None:
        if self.details.action != self.action:
            raise ValueError(f"Timeline details for {self.details.action.value} cannot be stored as {self.action.value}")


@dataclass(frozen=True, slots=True)
class TicketQuery:
    """Role-scoped listing filter understood by every repository.

    ``created_by`` restricts to one creator. ``agent_id`` selects tickets
    assigned to that agent plus unassigned tickets in ``unassigned_statuses``.
    """

    created_by: str | None = None
    agent_id: str | None = None
    unassigned_statuses: frozenset[TicketStatus] = frozenset()
    search: str | None = None
    offset: int = 0
    limit: int = 10

    @property
    def search_terms(self) -> list[str]:
        return (self.search or "").lower().split()


@dataclass(slots=True)
class TicketPage:
    items: Sequence[Ticket]
    total: int
    next_offset: int | None


@dataclass(slots=True)
class ResolvedComment:
    """Comment together with the comment it replies to, when visible."""

    comment: Comment
    parent: Comment | None = None


@dataclass(slots=True)
class TicketDetail:
    """Container bundling the ticket with its comments and timeline."""

    ticket: Ticket
    comments: Sequence[ResolvedComment] = field(default_factory=list)
    timeline: Sequence[TimelineEntry] = field(default_factory=list)


@dataclass(slots=True)
class TicketCreation:
    ticket: Ticket
    created: bool
