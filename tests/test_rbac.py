import pytest
from fastapi import HTTPException

from helpdesk.dependencies.auth import parse_token_registry, resolve_actor_from_token, role_required
from helpdesk.users.models import Actor, Role


@pytest.mark.asyncio
async def test_role_required_allows_authorized_actor():
    dependency = role_required(Role.AGENT, Role.ADMIN)
    actor = Actor("alice", Role.AGENT)
    result = await dependency(actor)  # type: ignore[arg-type]
    assert result.id == "alice"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_actor():
    dependency = role_required(Role.ADMIN)
    actor = Actor("bob", Role.USER)
    with pytest.raises(HTTPException) as exc:
        await dependency(actor)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == {"code": "ACCESS_DENIED", "message": "Insufficient permissions"}


def test_parse_token_registry():
    registry = parse_token_registry({"t1": "ops:lead:admin", "t2": "carol:Agent"})

    assert registry["t1"] == Actor("ops:lead", Role.ADMIN, name="ops:lead")
    assert registry["t2"].role is Role.AGENT


@pytest.mark.parametrize("entry", ["nobody", ":admin", "dave:superuser"])
def test_parse_token_registry_rejects_bad_entries(entry):
    with pytest.raises(ValueError):
        parse_token_registry({"token": entry})


def test_resolve_actor_from_token():
    registry = parse_token_registry({"good": "erin:user"})

    assert resolve_actor_from_token("good", registry).id == "erin"
    with pytest.raises(HTTPException) as missing:
        resolve_actor_from_token(None, registry)
    with pytest.raises(HTTPException) as unknown:
        resolve_actor_from_token("bad", registry)

    assert missing.value.status_code == 401
    assert unknown.value.status_code == 401
