from __future__ import annotations

from fastapi import HTTPException, Request

from helpdesk.users.service import UserService


async def get_user_service(request: Request) -> UserService:
    service = getattr(request.app.state, "user_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="User service is not configured")
    return service
