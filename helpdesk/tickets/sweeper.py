"""Background SLA enforcement.

The sweeper is the only writer without an actor: it moves overdue tickets to
``breached`` through the same version compare-and-swap that client updates
use, so whichever writer presents the current version first wins.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace
from datetime import datetime

from opentelemetry import trace

from helpdesk.core.clock import Clock, SystemClock

from .models import SlaBreachedDetails, Ticket
from .repository import TicketRepository
from .service import new_timeline_entry
from .state import TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SlaSweeper:
    """Periodically breach tickets whose deadline passed while still unresolved."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        clock: Clock | None = None,
        interval_seconds: float = 300.0,
    ) -> None:
        self._repository = repository
        self._clock = clock or SystemClock()
        self._interval = interval_seconds
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """Run one sweep and return how many tickets were breached.

        Never raises; failures are logged and left for the next cycle.
        """

        if self._lock.locked():
            logger.warning("SLA sweep already in progress; skipping overlapping run")
            return 0

        async with self._lock:
            with tracer.start_as_current_span("sla_sweep") as span:
                now = self._clock.now()
                try:
                    candidates = await self._repository.find_breach_candidates(now)
                except Exception:
                    logger.exception("SLA sweep could not load overdue tickets")
                    return 0

                logger.info("Found %d tickets with SLA breaches", len(candidates))
                breached = 0
                for ticket in candidates:
                    try:
                        if await self._breach(ticket, now):
                            breached += 1
                    except Exception:
                        logger.exception("SLA sweep failed to breach ticket %s", ticket.id)
                span.set_attribute("helpdesk.sla.candidates", len(candidates))
                span.set_attribute("helpdesk.sla.breached", breached)
                return breached

    async def _breach(self, ticket: Ticket, now: datetime) -> bool:
        if not TicketStateMachine.can_transition(ticket.status, TicketStatus.BREACHED, system=True):
            return False

        updated = replace(ticket, status=TicketStatus.BREACHED, version=ticket.version + 1, updated_at=now)
        entry = new_timeline_entry(
            ticket.id,
            SlaBreachedDetails(original_deadline=ticket.deadline, breached_at=now, original_status=ticket.status),
            actor=None,
            timestamp=now,
        )
        stored = await self._repository.compare_and_swap(updated, expected_version=ticket.version, entries=[entry])
        if stored is None:
            logger.info("Ticket %s changed during SLA sweep; re-checking next cycle", ticket.id)
            return False
        logger.info("Marked ticket %s as SLA breached", ticket.id)
        return True

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever(), name="sla-sweeper")
        logger.info("SLA sweeper started with a %.0fs interval", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("SLA sweeper stopped")

    async def _run_forever(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)
