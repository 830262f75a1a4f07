"""Ticket lifecycle engine: models, permissions, storage, service and SLA sweeper."""

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
    TicketServiceError,
)
from .memory import InMemoryTicketRepository
from .models import (
    UNSET,
    Comment,
    Priority,
    ResolvedComment,
    Ticket,
    TicketCreation,
    TicketDetail,
    TicketPage,
    TicketQuery,
    TimelineAction,
    TimelineEntry,
)
from .permissions import PermissionEvaluator, TicketAction
from .repository import PostgresTicketRepository, TicketRepository
from .service import TicketService
from .sla import SlaPolicy, compute_deadline
from .state import TicketStateMachine, TicketStatus
from .sweeper import SlaSweeper

__all__ = [
    "AccessDeniedError",
    "Comment",
    "DuplicateIdempotencyKeyError",
    "FieldInvalidError",
    "FieldRequiredError",
    "InMemoryTicketRepository",
    "InvalidAssigneeError",
    "InvalidParentCommentError",
    "InvalidTicketTransitionError",
    "PermissionEvaluator",
    "PostgresTicketRepository",
    "Priority",
    "ResolvedComment",
    "SlaPolicy",
    "SlaSweeper",
    "StaleUpdateError",
    "Ticket",
    "TicketAction",
    "TicketCreation",
    "TicketDetail",
    "TicketNotFoundError",
    "TicketPage",
    "TicketQuery",
    "TicketRepository",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TimelineAction",
    "TimelineEntry",
    "UNSET",
    "compute_deadline",
]
