from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from helpdesk.tickets.errors import DuplicateIdempotencyKeyError
from helpdesk.tickets.models import (
    CommentAddedDetails,
    CreatedDetails,
    Priority,
    SlaBreachedDetails,
    Ticket,
    TicketQuery,
    TimelineAction,
    TimelineEntry,
)
from helpdesk.tickets.repository import PostgresTicketRepository
from helpdesk.tickets.state import WORKABLE_STATUSES, TicketStatus

NOW = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


class DummyTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)


def _connection() -> AsyncMock:
    connection = AsyncMock()
    connection.transaction = MagicMock(return_value=DummyTransaction())
    return connection


def _ticket_row(**overrides):
    row = {
        "id": "ticket-1",
        "title": "Printer",
        "description": "Paper jam",
        "priority": "high",
        "status": "open",
        "created_by": "user-1",
        "assigned_to": None,
        "deadline": NOW + timedelta(hours=8),
        "version": 0,
        "idempotency_key": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _ticket(**overrides) -> Ticket:
    row = _ticket_row(**overrides)
    row["priority"] = Priority(row["priority"])
    row["status"] = TicketStatus(row["status"])
    return Ticket(**row)


def _created_entry() -> TimelineEntry:
    return TimelineEntry(
        id="entry-1",
        ticket_id="ticket-1",
        action=TimelineAction.CREATED,
        actor="user-1",
        details=CreatedDetails(priority=Priority.HIGH),
        timestamp=NOW,
    )


@pytest.mark.asyncio
async def test_ensure_schema_creates_tables():
    connection = _connection()
    repository = PostgresTicketRepository(DummyPool(connection))

    await repository.ensure_schema()

    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert len(executed) == 4
    assert "CREATE TABLE IF NOT EXISTS tickets" in executed[0]
    assert "ticket_comments" in executed[2]
    assert "ticket_timeline" in executed[3]


@pytest.mark.asyncio
async def test_create_ticket_inserts_ticket_and_timeline_in_transaction():
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_ticket_row())
    repository = PostgresTicketRepository(DummyPool(connection))

    stored = await repository.create_ticket(_ticket(), _created_entry())

    assert stored.id == "ticket-1"
    assert stored.priority is Priority.HIGH
    connection.transaction.assert_called_once()
    timeline_call = connection.execute.await_args
    assert "INSERT INTO ticket_timeline" in timeline_call.args[0]
    assert json.loads(timeline_call.args[5]) == {"priority": "high"}


@pytest.mark.asyncio
async def test_create_ticket_maps_idempotency_conflict():
    connection = _connection()
    violation = asyncpg.UniqueViolationError("duplicate key")
    violation.constraint_name = "tickets_idempotency_key_key"
    connection.fetchrow = AsyncMock(side_effect=violation)
    repository = PostgresTicketRepository(DummyPool(connection))

    with pytest.raises(DuplicateIdempotencyKeyError) as exc:
        await repository.create_ticket(_ticket(idempotency_key="abc"), _created_entry())

    assert exc.value.key == "abc"


@pytest.mark.asyncio
async def test_compare_and_swap_returns_none_when_version_moved():
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=None)
    repository = PostgresTicketRepository(DummyPool(connection))

    result = await repository.compare_and_swap(
        _ticket(status="in_progress", version=1), expected_version=0, entries=[_created_entry()]
    )

    assert result is None
    args = connection.fetchrow.await_args.args
    assert "WHERE id = $1 AND version = $2" in args[0]
    assert args[1:3] == ("ticket-1", 0)
    connection.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_compare_and_swap_writes_entries_on_success():
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_ticket_row(status="breached", version=1))
    repository = PostgresTicketRepository(DummyPool(connection))
    entry = TimelineEntry(
        id="entry-2",
        ticket_id="ticket-1",
        action=TimelineAction.SLA_BREACHED,
        actor=None,
        details=SlaBreachedDetails(
            original_deadline=NOW, breached_at=NOW + timedelta(hours=1), original_status=TicketStatus.OPEN
        ),
        timestamp=NOW + timedelta(hours=1),
    )

    result = await repository.compare_and_swap(
        _ticket(status="breached", version=1), expected_version=0, entries=[entry]
    )

    assert result is not None
    assert result.status is TicketStatus.BREACHED
    assert connection.execute.await_count == 1
    assert connection.execute.await_args.args[4] is None


@pytest.mark.asyncio
async def test_list_tickets_builds_agent_scope_and_search():
    connection = _connection()
    connection.fetchval = AsyncMock(return_value=3)
    connection.fetch = AsyncMock(return_value=[_ticket_row()])
    repository = PostgresTicketRepository(DummyPool(connection))
    query = TicketQuery(
        agent_id="agent-1",
        unassigned_statuses=WORKABLE_STATUSES,
        search="100% paper",
        offset=0,
        limit=1,
    )

    page = await repository.list_tickets(query)

    assert page.total == 3
    assert page.next_offset == 1
    count_sql, *count_params = connection.fetchval.await_args.args
    assert "assigned_to IS NULL AND status = ANY($2::text[])" in count_sql
    assert count_params == ["agent-1", ["in_progress", "open"], "%100\\%%", "%paper%"]
    list_args = connection.fetch.await_args.args
    assert "ORDER BY created_at DESC, seq DESC OFFSET $5 LIMIT $6" in list_args[0]
    assert list_args[-2:] == (0, 1)


@pytest.mark.asyncio
async def test_list_timeline_decodes_json_details():
    connection = _connection()
    connection.fetch = AsyncMock(
        return_value=[
            {
                "id": "entry-3",
                "ticket_id": "ticket-1",
                "action": "comment_added",
                "actor": "agent-1",
                "details": json.dumps({"commentId": "c-1", "isInternal": True}),
                "occurred_at": NOW.replace(tzinfo=None),
            }
        ]
    )
    repository = PostgresTicketRepository(DummyPool(connection))

    timeline = await repository.list_timeline("ticket-1")

    assert timeline[0].details == CommentAddedDetails(comment_id="c-1", is_internal=True)
    assert timeline[0].timestamp == NOW


@pytest.mark.asyncio
async def test_find_breach_candidates_excludes_terminal_statuses():
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[_ticket_row(deadline=NOW - timedelta(hours=1))])
    repository = PostgresTicketRepository(DummyPool(connection))

    candidates = await repository.find_breach_candidates(NOW)

    assert [ticket.id for ticket in candidates] == ["ticket-1"]
    sql, now, excluded = connection.fetch.await_args.args
    assert "deadline < $1" in sql
    assert now == NOW
    assert excluded == ["breached", "closed", "resolved"]
