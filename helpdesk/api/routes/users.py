from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict

from helpdesk.dependencies.tickets import AdminActor, StaffActor
from helpdesk.dependencies.users import get_user_service
from helpdesk.users.errors import UserServiceError
from helpdesk.users.models import Actor, Role
from helpdesk.users.service import UserService

router = APIRouter(prefix="/users", tags=["users"])

_STATUS_CODES: dict[str, int] = {
    "INVALID_ROLE": status.HTTP_400_BAD_REQUEST,
    "SELF_DEACTIVATION": status.HTTP_400_BAD_REQUEST,
    "USER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
}


class RoleUpdateRequest(BaseModel):
    # unknown roles are reported by the service as INVALID_ROLE
    role: str = ""


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str | None
    role: Role
    active: bool


class UserListResponse(BaseModel):
    users: list[UserResponse]


class AgentListResponse(BaseModel):
    agents: list[UserResponse]


UserServiceDep = Annotated[UserService, Depends(get_user_service)]


def _raise_http(exc: UserServiceError) -> NoReturn:
    status_code = _STATUS_CODES.get(exc.code, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=status_code, detail=exc.to_dict()) from exc


def _to_response(actor: Actor) -> UserResponse:
    return UserResponse.model_validate(actor)


@router.get("", response_model=UserListResponse)
async def list_users(service: UserServiceDep, _: AdminActor) -> UserListResponse:
    return UserListResponse(users=[_to_response(actor) for actor in await service.list_users()])


@router.get("/agents", response_model=AgentListResponse, summary="Active agents and admins for assignment")
async def list_agents(service: UserServiceDep, _: StaffActor) -> AgentListResponse:
    return AgentListResponse(agents=[_to_response(actor) for actor in await service.list_agents()])


@router.patch("/{user_id}/role", response_model=UserResponse)
async def change_role(
    user_id: str,
    payload: RoleUpdateRequest,
    service: UserServiceDep,
    actor: AdminActor,
) -> UserResponse:
    try:
        updated = await service.change_role(user_id, payload.role, actor=actor)
    except UserServiceError as exc:
        _raise_http(exc)
    return _to_response(updated)


@router.patch("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(user_id: str, service: UserServiceDep, actor: AdminActor) -> UserResponse:
    try:
        updated = await service.deactivate(user_id, actor=actor)
    except UserServiceError as exc:
        _raise_http(exc)
    return _to_response(updated)
