from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from helpdesk.core.config import Settings
from helpdesk.main import create_app
from helpdesk.tickets.memory import InMemoryTicketRepository
from helpdesk.tickets.service import TicketService
from helpdesk.users.directory import InMemoryUserDirectory
from helpdesk.users.service import UserService

TOKENS = {
    "admin-token": "admin:admin",
    "agent-token": "agent:agent",
    "user-token": "user:user",
}


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app():
    app = create_app(Settings(api_tokens=TOKENS, sla_sweep_enabled=False))
    directory = InMemoryUserDirectory(app.state.token_registry.values())
    app.state.ticket_service = TicketService(InMemoryTicketRepository(), directory)
    app.state.user_directory = directory
    app.state.user_service = UserService(directory)
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_agents_listing_is_staff_only(client):
    response = client.get("/users/agents", headers=_auth("agent-token"))

    assert response.status_code == 200
    assert [agent["id"] for agent in response.json()["agents"]] == ["admin", "agent"]
    assert client.get("/users/agents", headers=_auth("user-token")).status_code == 403


def test_user_listing_is_admin_only(client):
    assert client.get("/users", headers=_auth("agent-token")).status_code == 403

    response = client.get("/users", headers=_auth("admin-token"))

    assert response.status_code == 200
    assert {user["id"] for user in response.json()["users"]} == {"admin", "agent", "user"}


def test_admin_changes_role(client):
    response = client.patch("/users/user/role", json={"role": "agent"}, headers=_auth("admin-token"))

    assert response.status_code == 200
    assert response.json() == {"id": "user", "name": "user", "role": "agent", "active": True}
    agents = client.get("/users/agents", headers=_auth("user-token")).json()["agents"]
    assert "user" in [agent["id"] for agent in agents]


def test_demoted_agent_loses_update_rights(client):
    ticket = client.post(
        "/tickets", json={"title": "VPN", "description": "Cannot connect"}, headers=_auth("user-token")
    ).json()
    client.patch("/users/agent/role", json={"role": "user"}, headers=_auth("admin-token"))

    response = client.patch(f"/tickets/{ticket['id']}", json={"version": 0, "priority": "high"}, headers=_auth("agent-token"))

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "ACCESS_DENIED"


@pytest.mark.parametrize(
    ("path", "payload", "status_code", "code"),
    [
        ("/users/user/role", {"role": "superuser"}, 400, "INVALID_ROLE"),
        ("/users/user/role", {}, 400, "INVALID_ROLE"),
        ("/users/ghost/role", {"role": "agent"}, 404, "USER_NOT_FOUND"),
    ],
)
def test_role_change_errors(client, path, payload, status_code, code):
    response = client.patch(path, json=payload, headers=_auth("admin-token"))

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code


def test_role_change_is_admin_only(client):
    response = client.patch("/users/user/role", json={"role": "admin"}, headers=_auth("agent-token"))

    assert response.status_code == 403


def test_deactivated_agent_is_locked_out(client):
    response = client.patch("/users/agent/deactivate", headers=_auth("admin-token"))

    assert response.status_code == 200
    assert response.json()["active"] is False
    assert client.get("/tickets", headers=_auth("agent-token")).status_code == 401
    agents = client.get("/users/agents", headers=_auth("admin-token")).json()["agents"]
    assert [agent["id"] for agent in agents] == ["admin"]


def test_deactivated_agent_cannot_be_assigned(client):
    ticket = client.post(
        "/tickets", json={"title": "VPN", "description": "Cannot connect"}, headers=_auth("user-token")
    ).json()
    client.patch("/users/agent/deactivate", headers=_auth("admin-token"))

    response = client.patch(
        f"/tickets/{ticket['id']}", json={"version": 0, "assigned_to": "agent"}, headers=_auth("admin-token")
    )

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "assigned_to"


def test_admin_cannot_deactivate_self(client):
    response = client.patch("/users/admin/deactivate", headers=_auth("admin-token"))

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "SELF_DEACTIVATION"


def test_deactivating_unknown_user_is_not_found(client):
    response = client.patch("/users/ghost/deactivate", headers=_auth("admin-token"))

    assert response.status_code == 404


def test_user_routes_unavailable_without_service(app):
    app.state.user_service = None

    response = TestClient(app).get("/users/agents", headers=_auth("agent-token"))

    assert response.status_code == 503


def test_authentication_unavailable_without_token_registry(app):
    app.state.token_registry = None

    response = TestClient(app).get("/tickets", headers=_auth("admin-token"))

    assert response.status_code == 503
    assert response.json()["detail"] == "Authentication is not configured"
