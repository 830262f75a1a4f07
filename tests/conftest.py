from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.tickets.memory import InMemoryTicketRepository
from helpdesk.tickets.service import TicketService
from helpdesk.users.directory import InMemoryUserDirectory
from helpdesk.users.models import Actor, Role


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=Role.ADMIN, name="Ada")


@pytest.fixture
def agent() -> Actor:
    return Actor(id="agent-1", role=Role.AGENT, name="Arno")


@pytest.fixture
def other_agent() -> Actor:
    return Actor(id="agent-2", role=Role.AGENT, name="Bea")


@pytest.fixture
def user() -> Actor:
    return Actor(id="user-1", role=Role.USER, name="Uma")


@pytest.fixture
def other_user() -> Actor:
    return Actor(id="user-2", role=Role.USER, name="Olaf")


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def directory(admin, agent, other_agent, user, other_user) -> InMemoryUserDirectory:
    return InMemoryUserDirectory([admin, agent, other_agent, user, other_user])


@pytest.fixture
def service(repository, directory, clock) -> TicketService:
    return TicketService(repository, directory, clock=clock)
