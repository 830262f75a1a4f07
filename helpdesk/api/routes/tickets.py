from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, NoReturn

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.dependencies.auth import CurrentActor
from helpdesk.dependencies.tickets import get_ticket_service
from helpdesk.tickets.errors import TicketServiceError
from helpdesk.tickets.models import UNSET, Comment, Priority, ResolvedComment, Ticket, TimelineAction, TimelineEntry
from helpdesk.tickets.service import TicketService
from helpdesk.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])

_STATUS_CODES: dict[str, int] = {
    "FIELD_REQUIRED": status.HTTP_400_BAD_REQUEST,
    "FIELD_INVALID": status.HTTP_400_BAD_REQUEST,
    "INVALID_ASSIGNEE": status.HTTP_400_BAD_REQUEST,
    "INVALID_PARENT_COMMENT": status.HTTP_400_BAD_REQUEST,
    "ACCESS_DENIED": status.HTTP_403_FORBIDDEN,
    "TICKET_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "STALE_UPDATE": status.HTTP_409_CONFLICT,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
}


class TicketCreateRequest(BaseModel):
    # blank or oversized values are reported by the service as FIELD_* errors
    title: str = ""
    description: str = ""
    priority: str | None = None


class TicketUpdateRequest(BaseModel):
    version: int = Field(..., ge=0)
    status: str | None = None
    assigned_to: str | None = None
    priority: str | None = None


class CommentCreateRequest(BaseModel):
    content: str = ""
    parent_id: str | None = None
    is_internal: bool = False


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    priority: Priority
    status: TicketStatus
    created_by: str
    assigned_to: str | None
    deadline: datetime
    version: int
    idempotency_key: str | None
    created_at: datetime
    updated_at: datetime


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author: str
    content: str
    parent_id: str | None
    is_internal: bool
    created_at: datetime


class ThreadedCommentResponse(CommentResponse):
    parent: CommentResponse | None = None


class TimelineEntryResponse(BaseModel):
    id: str
    ticket_id: str
    action: TimelineAction
    actor: str | None
    details: dict[str, Any]
    timestamp: datetime


class TicketPageResponse(BaseModel):
    items: list[TicketResponse]
    total: int
    next_offset: int | None


class TicketDetailResponse(BaseModel):
    ticket: TicketResponse
    comments: list[ThreadedCommentResponse]
    timeline: list[TimelineEntryResponse]


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _raise_http(exc: TicketServiceError) -> NoReturn:
    status_code = _STATUS_CODES.get(exc.code, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=status_code, detail=exc.to_dict()) from exc


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


def _to_threaded_response(item: ResolvedComment) -> ThreadedCommentResponse:
    base = _to_comment_response(item.comment)
    parent = _to_comment_response(item.parent) if item.parent is not None else None
    return ThreadedCommentResponse(**base.model_dump(), parent=parent)


def _to_timeline_response(entry: TimelineEntry) -> TimelineEntryResponse:
    return TimelineEntryResponse(
        id=entry.id,
        ticket_id=entry.ticket_id,
        action=entry.action,
        actor=entry.actor,
        details=entry.details.to_payload(),
        timestamp=entry.timestamp,
    )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    response: Response,
    service: TicketServiceDep,
    actor: CurrentActor,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> TicketResponse:
    try:
        result = await service.create_ticket(
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            idempotency_key=idempotency_key,
            actor=actor,
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return _to_response(result.ticket)


@router.get("", response_model=TicketPageResponse)
async def list_tickets(
    service: TicketServiceDep,
    actor: CurrentActor,
    q: str | None = Query(default=None, max_length=200),
    offset: int = Query(default=0, ge=0),
    limit: int | None = Query(default=None, ge=1),
) -> TicketPageResponse:
    page = await service.list_tickets(actor=actor, search=q, offset=offset, limit=limit)
    return TicketPageResponse(
        items=[_to_response(ticket) for ticket in page.items],
        total=page.total,
        next_offset=page.next_offset,
    )


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: CurrentActor) -> TicketDetailResponse:
    try:
        detail = await service.get_ticket(ticket_id, actor=actor)
    except TicketServiceError as exc:
        _raise_http(exc)
    return TicketDetailResponse(
        ticket=_to_response(detail.ticket),
        comments=[_to_threaded_response(item) for item in detail.comments],
        timeline=[_to_timeline_response(entry) for entry in detail.timeline],
    )


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    assigned_to = payload.assigned_to if "assigned_to" in payload.model_fields_set else UNSET
    try:
        ticket = await service.update_ticket(
            ticket_id,
            version=payload.version,
            status=payload.status,
            assigned_to=assigned_to,
            priority=payload.priority,
            actor=actor,
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.post("/{ticket_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> CommentResponse:
    try:
        comment = await service.add_comment(
            ticket_id,
            content=payload.content,
            parent_id=payload.parent_id,
            is_internal=payload.is_internal,
            actor=actor,
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_comment_response(comment)
