from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Iterable, Mapping, Protocol

import asyncpg

from .models import STAFF_ROLES, Actor, Role


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> Actor | None:
        ...

    async def register(self, actor: Actor) -> None:
        """Insert ``actor`` or refresh its name and role, keeping its active flag."""
        ...

    async def list_users(self) -> list[Actor]:
        ...

    async def list_staff(self) -> list[Actor]:
        ...

    async def set_role(self, user_id: str, role: Role) -> Actor | None:
        ...

    async def deactivate(self, user_id: str) -> Actor | None:
        ...


class InMemoryUserDirectory:
    """Process local directory used for development and tests."""

    def __init__(self, actors: Iterable[Actor] = ()) -> None:
        self._actors: dict[str, Actor] = {actor.id: actor for actor in actors}
        self._lock = asyncio.Lock()

    async def get_user(self, user_id: str) -> Actor | None:
        return self._actors.get(user_id)

    async def register(self, actor: Actor) -> None:
        async with self._lock:
            existing = self._actors.get(actor.id)
            if existing is not None:
                actor = replace(actor, active=existing.active)
            self._actors[actor.id] = actor

    async def list_users(self) -> list[Actor]:
        # newest registrations first
        return [actor for actor in reversed(list(self._actors.values())) if actor.active]

    async def list_staff(self) -> list[Actor]:
        staff = [actor for actor in self._actors.values() if actor.active and actor.role in STAFF_ROLES]
        return sorted(staff, key=lambda actor: (actor.name or actor.id, actor.id))

    async def set_role(self, user_id: str, role: Role) -> Actor | None:
        return await self._update(user_id, role=role)

    async def deactivate(self, user_id: str) -> Actor | None:
        return await self._update(user_id, active=False)

    async def _update(self, user_id: str, **changes: Any) -> Actor | None:
        async with self._lock:
            current = self._actors.get(user_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            self._actors[user_id] = updated
        return updated


class PostgresUserDirectory:
    """Directory backed by the ``users`` table."""

    _CREATE_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NULL,
        role TEXT NOT NULL,
        active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _SELECT_USER_SQL = """
    SELECT id, name, role, active
    FROM users
    WHERE id = $1
    """

    _UPSERT_USER_SQL = """
    INSERT INTO users (id, name, role)
    VALUES ($1, $2, $3)
    ON CONFLICT (id) DO UPDATE SET role = EXCLUDED.role, name = EXCLUDED.name
    """

    _SELECT_ACTIVE_USERS_SQL = """
    SELECT id, name, role, active
    FROM users
    WHERE active
    ORDER BY created_at DESC, id ASC
    """

    _SELECT_STAFF_SQL = """
    SELECT id, name, role, active
    FROM users
    WHERE active AND role = ANY($1::text[])
    ORDER BY COALESCE(name, id) ASC, id ASC
    """

    _UPDATE_ROLE_SQL = """
    UPDATE users
    SET role = $2
    WHERE id = $1
    RETURNING id, name, role, active
    """

    _DEACTIVATE_SQL = """
    UPDATE users
    SET active = FALSE
    WHERE id = $1
    RETURNING id, name, role, active
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_USERS_SQL)

    async def get_user(self, user_id: str) -> Actor | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_USER_SQL, user_id)
        if row is None:
            return None
        return self._row_to_actor(row)

    async def register(self, actor: Actor) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._UPSERT_USER_SQL, actor.id, actor.name, actor.role.value)

    async def list_users(self) -> list[Actor]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_ACTIVE_USERS_SQL)
        return [self._row_to_actor(row) for row in rows]

    async def list_staff(self) -> list[Actor]:
        roles = sorted(role.value for role in STAFF_ROLES)
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_STAFF_SQL, roles)
        return [self._row_to_actor(row) for row in rows]

    async def set_role(self, user_id: str, role: Role) -> Actor | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._UPDATE_ROLE_SQL, user_id, role.value)
        return self._row_to_actor(row) if row is not None else None

    async def deactivate(self, user_id: str) -> Actor | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._DEACTIVATE_SQL, user_id)
        return self._row_to_actor(row) if row is not None else None

    @staticmethod
    def _row_to_actor(row: Mapping[str, Any]) -> Actor:
        name = row.get("name")
        return Actor(
            id=str(row["id"]),
            role=Role(str(row["role"])),
            name=str(name) if name else None,
            active=bool(row.get("active", True)),
        )
