from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI

from helpdesk.api.routes import ping, sla, tickets, users
from helpdesk.core.clock import SystemClock
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from helpdesk.dependencies.auth import parse_token_registry
from helpdesk.tickets.memory import InMemoryTicketRepository
from helpdesk.tickets.repository import PostgresTicketRepository, TicketRepository
from helpdesk.tickets.service import TicketService
from helpdesk.tickets.sla import SlaPolicy
from helpdesk.tickets.sweeper import SlaSweeper
from helpdesk.users.directory import InMemoryUserDirectory, PostgresUserDirectory, UserDirectory
from helpdesk.users.service import UserService

logger = logging.getLogger(__name__)


async def build_storage(settings: Settings) -> tuple[TicketRepository, UserDirectory, asyncpg.Pool | None]:
    """Create the repositories selected by ``storage_backend``."""

    backend = settings.storage_backend.lower()
    if backend == "memory":
        return InMemoryTicketRepository(), InMemoryUserDirectory(), None
    if backend != "postgres":
        raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")

    pool = await asyncpg.create_pool(dsn=settings.postgres_dsn, min_size=1, max_size=10)
    directory = PostgresUserDirectory(pool)
    try:
        await directory.ensure_schema()
    except Exception:
        await pool.close()
        raise
    return PostgresTicketRepository(pool), directory, pool


def build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
        app_logger = configure_logging(settings)
        tracer_provider = init_tracer(settings)
        app.state.logger = app_logger

        clock = SystemClock()
        pool: asyncpg.Pool | None = None
        sweeper: SlaSweeper | None = None
        app.state.ticket_service = None
        app.state.sla_sweeper = None
        app.state.user_directory = None
        app.state.user_service = None
        try:
            repository, directory, pool = await build_storage(settings)
            await repository.ensure_schema()
            for actor in app.state.token_registry.values():
                await directory.register(actor)
            app.state.user_directory = directory
            app.state.user_service = UserService(directory)
            app.state.ticket_service = TicketService(
                repository,
                directory,
                clock=clock,
                sla_policy=SlaPolicy.from_settings(settings),
                default_page_size=settings.default_page_size,
                max_page_size=settings.max_page_size,
            )
            sweeper = SlaSweeper(repository, clock=clock, interval_seconds=settings.sla_sweep_interval_seconds)
            app.state.sla_sweeper = sweeper
            if settings.sla_sweep_enabled:
                sweeper.start()
        except Exception:  # pragma: no cover - routes answer 503 until storage is reachable
            logger.exception("Ticket service initialisation failed")
            app.state.ticket_service = None
            app.state.sla_sweeper = None
            app.state.user_directory = None
            app.state.user_service = None
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            if pool is not None:
                await pool.close()
            shutdown_tracer(tracer_provider)

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, lifespan=build_lifespan(settings))
    app.state.settings = settings
    app.state.token_registry = parse_token_registry(settings.api_tokens or {})
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(sla.router)
    app.include_router(users.router)
    return app


app = create_app()
