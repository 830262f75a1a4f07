from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    BREACHED = "breached"


TERMINAL_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.BREACHED})

# Statuses agents and admins may list when looking for unclaimed work.
WORKABLE_STATUSES = frozenset({TicketStatus.OPEN, TicketStatus.IN_PROGRESS})


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    ``breached`` is only ever entered by the SLA sweeper, so client driven
    transitions into it are rejected even though the edge exists.
    """

    _TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.OPEN: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.BREACHED}),
        TicketStatus.IN_PROGRESS: frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.BREACHED}),
        TicketStatus.RESOLVED: frozenset(),
        TicketStatus.CLOSED: frozenset(),
        TicketStatus.BREACHED: frozenset(),
    }

    _SYSTEM_ONLY = frozenset({TicketStatus.BREACHED})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return status in TERMINAL_STATUSES

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus, *, system: bool = False) -> bool:
        if current == new:
            return True
        if new in cls._SYSTEM_ONLY and not system:
            return False
        return new in cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus, *, system: bool = False) -> None:
        if not cls.can_transition(current, new, system=system):
            raise ValueError(f"Invalid ticket status transition: {current.value} -> {new.value}")
