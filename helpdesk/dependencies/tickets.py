from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from helpdesk.dependencies.auth import role_required
from helpdesk.tickets.service import TicketService
from helpdesk.tickets.sweeper import SlaSweeper
from helpdesk.users.models import Actor, Role

require_staff = role_required(Role.AGENT, Role.ADMIN)
require_admin = role_required(Role.ADMIN)

StaffActor = Annotated[Actor, Depends(require_staff)]
AdminActor = Annotated[Actor, Depends(require_admin)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_sla_sweeper(request: Request) -> SlaSweeper:
    sweeper = getattr(request.app.state, "sla_sweeper", None)
    if sweeper is None:
        raise HTTPException(status_code=503, detail="SLA sweeper is not configured")
    return sweeper
