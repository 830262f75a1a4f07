from collections.abc import Callable, Mapping
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpdesk.users.models import Actor, Role

bearer_scheme = HTTPBearer(auto_error=False)


def parse_token_registry(tokens: Mapping[str, str]) -> dict[str, Actor]:
    """Build the token -> actor map from ``{"token": "identity:role"}`` settings."""

    registry: dict[str, Actor] = {}
    for token, entry in tokens.items():
        identity, sep, role = entry.rpartition(":")
        if not sep or not identity:
            raise ValueError(f"Token entry must look like 'identity:role', got {entry!r}")
        registry[token] = Actor(id=identity, role=Role(role.strip().lower()), name=identity)
    return registry


def resolve_actor_from_token(token: str | None, registry: Mapping[str, Actor]) -> Actor:
    """Return the actor associated with the provided bearer token."""

    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    actor = registry.get(token)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return actor


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    """Resolve the caller from the bearer token registry on ``app.state``.

    Credentials themselves are issued elsewhere; this layer only maps a known
    token to an identity. When a user directory is configured, the stored
    record decides the role, and deactivated users are rejected.
    """

    registry = getattr(request.app.state, "token_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    token = credentials.credentials if credentials is not None else None
    actor = resolve_actor_from_token(token, registry)

    directory = getattr(request.app.state, "user_directory", None)
    if directory is None:
        return actor
    stored = await directory.get_user(actor.id)
    if stored is None:
        return actor
    if not stored.active:
        raise HTTPException(status_code=401, detail="Invalid token or user not found")
    return stored


def role_required(*roles: Role) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds one of ``roles``."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=403,
                detail={"code": "ACCESS_DENIED", "message": "Insufficient permissions"},
            )
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
