from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from helpdesk.dependencies.tickets import AdminActor, get_sla_sweeper
from helpdesk.tickets.sweeper import SlaSweeper

router = APIRouter(prefix="/sla", tags=["sla"])


class SweepResponse(BaseModel):
    breached: int


@router.post("/sweep", response_model=SweepResponse, summary="Run one SLA sweep immediately")
async def run_sla_sweep(
    sweeper: Annotated[SlaSweeper, Depends(get_sla_sweeper)],
    _: AdminActor,
) -> SweepResponse:
    return SweepResponse(breached=await sweeper.run_once())
