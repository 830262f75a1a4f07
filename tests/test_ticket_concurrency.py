from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from helpdesk.tickets.errors import StaleUpdateError
from helpdesk.tickets.models import StatusChangedDetails
from helpdesk.tickets.service import new_timeline_entry
from helpdesk.tickets.state import TicketStatus


@pytest.mark.asyncio
async def test_concurrent_updates_at_same_version_have_one_winner(service, user, agent, admin):
    ticket = (await service.create_ticket(title="Disk full", description="C: is at 100%", actor=user)).ticket

    results = await asyncio.gather(
        service.update_ticket(ticket.id, version=0, priority="high", actor=admin),
        service.update_ticket(ticket.id, version=0, assigned_to=agent.id, actor=admin),
        return_exceptions=True,
    )

    failures = [result for result in results if isinstance(result, StaleUpdateError)]
    successes = [result for result in results if not isinstance(result, Exception)]
    assert len(failures) == 1
    assert len(successes) == 1

    stored = (await service.get_ticket(ticket.id, actor=admin)).ticket
    assert stored.version == 1
    assert len(await service.get_timeline(ticket.id, actor=admin)) == 2


@pytest.mark.asyncio
async def test_compare_and_swap_rejects_moved_version(service, repository, user, clock):
    ticket = (await service.create_ticket(title="Mouse", description="Double clicks", actor=user)).ticket
    now = clock.now()

    def attempt(status: TicketStatus):
        candidate = replace(ticket, status=status, version=1, updated_at=now)
        entry = new_timeline_entry(
            ticket.id,
            StatusChangedDetails(old_status=ticket.status, new_status=status),
            actor="agent-1",
            timestamp=now,
        )
        return repository.compare_and_swap(candidate, expected_version=0, entries=[entry])

    winner, loser = await asyncio.gather(attempt(TicketStatus.IN_PROGRESS), attempt(TicketStatus.CLOSED))

    assert winner is not None and winner.status is TicketStatus.IN_PROGRESS
    assert loser is None
    timeline = await repository.list_timeline(ticket.id)
    assert [entry.details for entry in timeline[1:]] == [
        StatusChangedDetails(old_status=TicketStatus.OPEN, new_status=TicketStatus.IN_PROGRESS)
    ]


@pytest.mark.asyncio
async def test_compare_and_swap_requires_successor_version(repository, service, user):
    ticket = (await service.create_ticket(title="Keyboard", description="Sticky keys", actor=user)).ticket

    with pytest.raises(ValueError):
        await repository.compare_and_swap(replace(ticket, version=5), expected_version=0, entries=[])
