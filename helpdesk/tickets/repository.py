from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

import asyncpg

from helpdesk.core.clock import ensure_utc

from .errors import DuplicateIdempotencyKeyError
from .models import (
    Comment,
    Priority,
    Ticket,
    TicketPage,
    TicketQuery,
    TimelineAction,
    TimelineEntry,
    details_from_payload,
)
from .state import TERMINAL_STATUSES, TicketStatus


class TicketRepository(Protocol):
    """Storage contract for tickets, their comments and their timeline.

    ``create_ticket``, ``compare_and_swap`` and ``add_comment`` each write the
    record and its timeline entries atomically.
    """

    async def ensure_schema(self) -> None:
        ...

    async def create_ticket(self, ticket: Ticket, entry: TimelineEntry) -> Ticket:
        ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ...

    async def get_ticket_by_idempotency_key(self, key: str) -> Ticket | None:
        ...

    async def list_tickets(self, query: TicketQuery) -> TicketPage:
        ...

    async def compare_and_swap(
        self, ticket: Ticket, *, expected_version: int, entries: Sequence[TimelineEntry]
    ) -> Ticket | None:
        """Persist ``ticket`` only if the stored version is ``expected_version``.

        Returns ``None`` when the stored version moved on or the ticket is gone.
        """
        ...

    async def find_breach_candidates(self, now: datetime) -> list[Ticket]:
        ...

    async def add_comment(self, comment: Comment, entry: TimelineEntry) -> Comment:
        ...

    async def get_comment(self, comment_id: str) -> Comment | None:
        ...

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        ...

    async def list_timeline(self, ticket_id: str) -> list[TimelineEntry]:
        ...


def next_offset(offset: int, limit: int, total: int) -> int | None:
    return offset + limit if offset + limit < total else None


def check_successor(ticket: Ticket, expected_version: int) -> None:
    if ticket.version != expected_version + 1:
        raise ValueError(
            f"Ticket {ticket.id} must carry version {expected_version + 1}, got {ticket.version}"
        )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresTicketRepository:
    """Data access layer for tickets, comments and timeline entries."""

    _TICKET_COLUMNS = (
        "id, title, description, priority, status, created_by, assigned_to, deadline, "
        "version, idempotency_key, created_at, updated_at"
    )

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        seq BIGSERIAL UNIQUE,
        id TEXT PRIMARY KEY,
        title VARCHAR(200) NOT NULL,
        description TEXT NOT NULL,
        priority TEXT NOT NULL,
        status TEXT NOT NULL,
        created_by TEXT NOT NULL,
        assigned_to TEXT NULL,
        deadline TIMESTAMPTZ NOT NULL,
        version INTEGER NOT NULL DEFAULT 0,
        idempotency_key TEXT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_TICKET_INDEXES_SQL = """
    CREATE INDEX IF NOT EXISTS tickets_created_by_idx ON tickets (created_by);
    CREATE INDEX IF NOT EXISTS tickets_assigned_to_idx ON tickets (assigned_to);
    CREATE INDEX IF NOT EXISTS tickets_deadline_idx ON tickets (deadline);
    """

    _CREATE_COMMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_comments (
        seq BIGSERIAL UNIQUE,
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        author TEXT NOT NULL,
        content TEXT NOT NULL,
        parent_id TEXT NULL REFERENCES ticket_comments(id),
        is_internal BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_TIMELINE_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_timeline (
        seq BIGSERIAL UNIQUE,
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        action TEXT NOT NULL,
        actor TEXT NULL,
        details JSONB NOT NULL DEFAULT '{}'::jsonb,
        occurred_at TIMESTAMPTZ NOT NULL
    )
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets ({_TICKET_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _SELECT_TICKET_BY_KEY_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE idempotency_key = $1
    """

    _COMPARE_AND_SWAP_SQL = f"""
    UPDATE tickets
    SET priority = $3,
        status = $4,
        assigned_to = $5,
        version = $6,
        updated_at = $7
    WHERE id = $1 AND version = $2
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_BREACH_CANDIDATES_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE deadline < $1 AND status <> ALL($2::text[])
    ORDER BY deadline ASC, seq ASC
    """

    _INSERT_COMMENT_SQL = """
    INSERT INTO ticket_comments (id, ticket_id, author, content, parent_id, is_internal, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    """

    _SELECT_COMMENT_SQL = """
    SELECT id, ticket_id, author, content, parent_id, is_internal, created_at
    FROM ticket_comments
    WHERE id = $1
    """

    _SELECT_COMMENTS_SQL = """
    SELECT id, ticket_id, author, content, parent_id, is_internal, created_at
    FROM ticket_comments
    WHERE ticket_id = $1
    ORDER BY created_at ASC, seq ASC
    """

    _INSERT_TIMELINE_SQL = """
    INSERT INTO ticket_timeline (id, ticket_id, action, actor, details, occurred_at)
    VALUES ($1, $2, $3, $4, $5::jsonb, $6)
    """

    _SELECT_TIMELINE_SQL = """
    SELECT id, ticket_id, action, actor, details, occurred_at
    FROM ticket_timeline
    WHERE ticket_id = $1
    ORDER BY occurred_at ASC, seq ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_TICKET_INDEXES_SQL)
            await connection.execute(self._CREATE_COMMENTS_SQL)
            await connection.execute(self._CREATE_TIMELINE_SQL)

    async def create_ticket(self, ticket: Ticket, entry: TimelineEntry) -> Ticket:
        async with self._pool.acquire() as connection:
            try:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        self._INSERT_TICKET_SQL,
                        ticket.id,
                        ticket.title,
                        ticket.description,
                        ticket.priority.value,
                        ticket.status.value,
                        ticket.created_by,
                        ticket.assigned_to,
                        ticket.deadline,
                        ticket.version,
                        ticket.idempotency_key,
                        ticket.created_at,
                        ticket.updated_at,
                    )
                    if row is None:
                        raise RuntimeError("Failed to insert ticket")
                    await self._insert_timeline(connection, entry)
            except asyncpg.UniqueViolationError as exc:
                if ticket.idempotency_key and "idempotency_key" in (exc.constraint_name or ""):
                    raise DuplicateIdempotencyKeyError(ticket.idempotency_key) from exc
                raise
        return self._row_to_ticket(row)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def get_ticket_by_idempotency_key(self, key: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_BY_KEY_SQL, key)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def list_tickets(self, query: TicketQuery) -> TicketPage:
        where, params = self._build_filter(query)
        count_sql = f"SELECT COUNT(*) FROM tickets{where}"
        list_sql = (
            f"SELECT {self._TICKET_COLUMNS} FROM tickets{where} "
            f"ORDER BY created_at DESC, seq DESC OFFSET ${len(params) + 1} LIMIT ${len(params) + 2}"
        )
        async with self._pool.acquire() as connection:
            total = await connection.fetchval(count_sql, *params)
            rows = await connection.fetch(list_sql, *params, query.offset, query.limit)
        total = int(total or 0)
        return TicketPage(
            items=[self._row_to_ticket(row) for row in rows],
            total=total,
            next_offset=next_offset(query.offset, query.limit, total),
        )

    async def compare_and_swap(
        self, ticket: Ticket, *, expected_version: int, entries: Sequence[TimelineEntry]
    ) -> Ticket | None:
        check_successor(ticket, expected_version)
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    self._COMPARE_AND_SWAP_SQL,
                    ticket.id,
                    expected_version,
                    ticket.priority.value,
                    ticket.status.value,
                    ticket.assigned_to,
                    ticket.version,
                    ticket.updated_at,
                )
                if row is None:
                    return None
                for entry in entries:
                    await self._insert_timeline(connection, entry)
        return self._row_to_ticket(row)

    async def find_breach_candidates(self, now: datetime) -> list[Ticket]:
        excluded = sorted(status.value for status in TERMINAL_STATUSES)
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_BREACH_CANDIDATES_SQL, now, excluded)
        return [self._row_to_ticket(row) for row in rows]

    async def add_comment(self, comment: Comment, entry: TimelineEntry) -> Comment:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    self._INSERT_COMMENT_SQL,
                    comment.id,
                    comment.ticket_id,
                    comment.author,
                    comment.content,
                    comment.parent_id,
                    comment.is_internal,
                    comment.created_at,
                )
                await self._insert_timeline(connection, entry)
        return comment

    async def get_comment(self, comment_id: str) -> Comment | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_COMMENT_SQL, comment_id)
        if row is None:
            return None
        return self._row_to_comment(row)

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_COMMENTS_SQL, ticket_id)
        return [self._row_to_comment(row) for row in rows]

    async def list_timeline(self, ticket_id: str) -> list[TimelineEntry]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_TIMELINE_SQL, ticket_id)
        return [self._row_to_timeline(row) for row in rows]

    async def _insert_timeline(self, connection: Any, entry: TimelineEntry) -> None:
        await connection.execute(
            self._INSERT_TIMELINE_SQL,
            entry.id,
            entry.ticket_id,
            entry.action.value,
            entry.actor,
            json.dumps(entry.details.to_payload()),
            entry.timestamp,
        )

    @staticmethod
    def _build_filter(query: TicketQuery) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.created_by is not None:
            params.append(query.created_by)
            clauses.append(f"created_by = ${len(params)}")
        if query.agent_id is not None:
            params.append(query.agent_id)
            params.append(sorted(status.value for status in query.unassigned_statuses))
            clauses.append(
                f"(assigned_to = ${len(params) - 1} "
                f"OR (assigned_to IS NULL AND status = ANY(${len(params)}::text[])))"
            )
        for term in query.search_terms:
            params.append(f"%{_escape_like(term)}%")
            clauses.append(f"(title || ' ' || description) ILIKE ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        assigned_to = row["assigned_to"]
        key = row["idempotency_key"]
        return Ticket(
            id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            priority=Priority(str(row["priority"])),
            status=TicketStatus(str(row["status"])),
            created_by=str(row["created_by"]),
            assigned_to=str(assigned_to) if assigned_to is not None else None,
            deadline=ensure_utc(row["deadline"]),
            version=int(row["version"]),
            idempotency_key=str(key) if key is not None else None,
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
        )

    @staticmethod
    def _row_to_comment(row: Mapping[str, Any]) -> Comment:
        parent_id = row["parent_id"]
        return Comment(
            id=str(row["id"]),
            ticket_id=str(row["ticket_id"]),
            author=str(row["author"]),
            content=str(row["content"]),
            parent_id=str(parent_id) if parent_id is not None else None,
            is_internal=bool(row["is_internal"]),
            created_at=ensure_utc(row["created_at"]),
        )

    @staticmethod
    def _row_to_timeline(row: Mapping[str, Any]) -> TimelineEntry:
        action = TimelineAction(str(row["action"]))
        payload = row["details"]
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        actor = row["actor"]
        return TimelineEntry(
            id=str(row["id"]),
            ticket_id=str(row["ticket_id"]),
            action=action,
            actor=str(actor) if actor is not None else None,
            details=details_from_payload(action, payload or {}),
            timestamp=ensure_utc(row["occurred_at"]),
        )
