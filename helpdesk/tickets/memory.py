from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from .errors import DuplicateIdempotencyKeyError
from .models import Comment, Ticket, TicketPage, TicketQuery, TimelineEntry
from .repository import check_successor, next_offset
from .state import TERMINAL_STATUSES


class InMemoryTicketRepository:
    """Process local repository with the same atomicity rules as the Postgres one.

    All writes go through one lock so a compare-and-swap together with its
    timeline entries is observed all-or-nothing. Records are copied on the way
    in and out so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._tickets: dict[str, Ticket] = {}
        self._ticket_seq: dict[str, int] = {}
        self._keys: dict[str, str] = {}
        self._comments: dict[str, Comment] = {}
        self._comments_by_ticket: dict[str, list[str]] = {}
        self._timeline: dict[str, list[TimelineEntry]] = {}
        self._seq = 0

    async def ensure_schema(self) -> None:
        return None

    async def create_ticket(self, ticket: Ticket, entry: TimelineEntry) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets:
                raise ValueError(f"Ticket {ticket.id} already exists")
            if ticket.idempotency_key and ticket.idempotency_key in self._keys:
                raise DuplicateIdempotencyKeyError(ticket.idempotency_key)
            self._seq += 1
            self._tickets[ticket.id] = replace(ticket)
            self._ticket_seq[ticket.id] = self._seq
            if ticket.idempotency_key:
                self._keys[ticket.idempotency_key] = ticket.id
            self._timeline[ticket.id] = [entry]
            self._comments_by_ticket[ticket.id] = []
        return replace(ticket)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return replace(ticket) if ticket is not None else None

    async def get_ticket_by_idempotency_key(self, key: str) -> Ticket | None:
        ticket_id = self._keys.get(key)
        if ticket_id is None:
            return None
        return await self.get_ticket(ticket_id)

    async def list_tickets(self, query: TicketQuery) -> TicketPage:
        matches = [ticket for ticket in self._tickets.values() if self._matches(ticket, query)]
        matches.sort(key=lambda ticket: (ticket.created_at, self._ticket_seq[ticket.id]), reverse=True)
        total = len(matches)
        window = matches[query.offset : query.offset + query.limit]
        return TicketPage(
            items=[replace(ticket) for ticket in window],
            total=total,
            next_offset=next_offset(query.offset, query.limit, total),
        )

    async def compare_and_swap(
        self, ticket: Ticket, *, expected_version: int, entries: Sequence[TimelineEntry]
    ) -> Ticket | None:
        check_successor(ticket, expected_version)
        async with self._lock:
            current = self._tickets.get(ticket.id)
            if current is None or current.version != expected_version:
                return None
            stored = replace(
                current,
                priority=ticket.priority,
                status=ticket.status,
                assigned_to=ticket.assigned_to,
                version=ticket.version,
                updated_at=ticket.updated_at,
            )
            self._tickets[ticket.id] = stored
            self._timeline[ticket.id].extend(entries)
        return replace(stored)

    async def find_breach_candidates(self, now: datetime) -> list[Ticket]:
        candidates = [
            ticket
            for ticket in self._tickets.values()
            if ticket.deadline < now and ticket.status not in TERMINAL_STATUSES
        ]
        candidates.sort(key=lambda ticket: (ticket.deadline, self._ticket_seq[ticket.id]))
        return [replace(ticket) for ticket in candidates]

    async def add_comment(self, comment: Comment, entry: TimelineEntry) -> Comment:
        async with self._lock:
            if comment.ticket_id not in self._tickets:
                raise ValueError(f"Ticket {comment.ticket_id} does not exist")
            self._comments[comment.id] = replace(comment)
            self._comments_by_ticket[comment.ticket_id].append(comment.id)
            self._timeline[comment.ticket_id].append(entry)
        return replace(comment)

    async def get_comment(self, comment_id: str) -> Comment | None:
        comment = self._comments.get(comment_id)
        return replace(comment) if comment is not None else None

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        comments = [self._comments[comment_id] for comment_id in self._comments_by_ticket.get(ticket_id, [])]
        # sorted() is stable, so equal timestamps keep insertion order
        return [replace(comment) for comment in sorted(comments, key=lambda comment: comment.created_at)]

    async def list_timeline(self, ticket_id: str) -> list[TimelineEntry]:
        entries = self._timeline.get(ticket_id, [])
        return sorted(entries, key=lambda entry: entry.timestamp)

    @staticmethod
    def _matches(ticket: Ticket, query: TicketQuery) -> bool:
        if query.created_by is not None and ticket.created_by != query.created_by:
            return False
        if query.agent_id is not None:
            mine = ticket.assigned_to == query.agent_id
            claimable = ticket.assigned_to is None and ticket.status in query.unassigned_statuses
            if not (mine or claimable):
                return False
        haystack = f"{ticket.title} {ticket.description}".lower()
        return all(term in haystack for term in query.search_terms)
