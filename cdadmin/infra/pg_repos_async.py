# cdadmin/infra/pg_repos_async.py
"""
Async Postgres repositories for tasks, applications, orgs and users.

Loosely structured fields (steps, trigger payloads, environments,
secrets, provider credentials) live in jsonb columns.  Application
environments and trigger payloads use plain json so the declared key order
survives storage: the first environment key is the default dispatch target.
Partial updates only touch allow-listed columns; unknown keys are rejected.
"""
from __future__ import annotations

import json
from typing import Any

import asyncpg

from cdadmin.core.domain import Application, Organization, OrgRole, Task, TaskStep, User
from cdadmin.infra.db_resilience_async import safe_db_conn
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)


def _parse_json(raw: Any) -> Any:
    """Parse a json or jsonb column value (may be dict / list or str)."""
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, str):
        return json.loads(raw)
    return {}


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def _build_update(
    table: str,
    key: str,
    partial: dict[str, Any],
    columns: set[str],
    json_columns: dict[str, str],
) -> tuple[str, list[Any]]:
    """
    Build ``UPDATE table SET ... WHERE id = $1`` for allow-listed columns.

    ``json_columns`` maps each json-typed column to its cast (``json`` or
    ``jsonb``).  Raises ValueError on unknown or empty updates.
    """
    unknown = set(partial) - columns
    if unknown:
        raise ValueError(f"Cannot update {table} columns: {sorted(unknown)}")
    if not partial:
        raise ValueError(f"No {table} columns to update")

    updates = []
    params: list[Any] = [key]
    for idx, (column, value) in enumerate(sorted(partial.items()), start=2):
        cast = json_columns.get(column)
        if cast:
            updates.append(f"{column} = ${idx}::{cast}")
            params.append(json.dumps(value))
        else:
            updates.append(f"{column} = ${idx}")
            params.append(value)

    updates.append("updated_at = now()")
    return f"UPDATE {table} SET {', '.join(updates)} WHERE id = $1", params


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

_TASK_COLUMNS = {"status", "steps", "trigger_payload"}
_TASK_JSON = {"steps": "jsonb", "trigger_payload": "json"}


def _row_to_task(row: asyncpg.Record) -> Task:
    return Task(
        id=row["id"],
        app_id=row["app_id"] or "",
        status=row["status"],
        steps=[TaskStep.from_dict(s) for s in (_parse_json(row["steps"]) or [])],
        trigger_payload=_parse_json(row["trigger_payload"]),
        created_at=_iso(row["created_at"]),
        updated_at=_iso(row["updated_at"]),
    )


class AsyncPostgresTaskRepository:
    """Task reads and status updates (rows are inserted by the worker)."""

    async def get_task_detail(self, task_id: str) -> Task | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, app_id, status, steps, trigger_payload, created_at, updated_at "
                "FROM tasks WHERE id = $1",
                task_id,
            )
        return _row_to_task(row) if row else None

    async def update_task(self, task_id: str, partial: dict) -> None:
        sql, params = _build_update("tasks", task_id, partial, _TASK_COLUMNS, _TASK_JSON)
        async with safe_db_conn() as conn:
            await conn.execute(sql, *params)
        logger.debug(f"task updated: fields={sorted(partial)}", extra={"task_id": task_id})


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------

_APP_COLUMNS = {"environment", "description", "repo_url"}
_APP_JSON = {"environment": "json"}


class AsyncPostgresApplicationRepository:

    async def get_app_by_id(self, app_id: str) -> Application | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, owner_org_id, provider, owner, repo_name, repo_url, environment, description "
                "FROM applications WHERE id = $1",
                app_id,
            )
        if not row:
            return None
        return Application(
            id=row["id"],
            owner_org_id=row["owner_org_id"],
            provider=row["provider"],
            owner=row["owner"] or "",
            repo_name=row["repo_name"] or "",
            repo_url=row["repo_url"] or "",
            environment=_parse_json(row["environment"]),
            description=row["description"] or "",
        )

    async def update_application(self, app_id: str, partial: dict) -> None:
        sql, params = _build_update("applications", app_id, partial, _APP_COLUMNS, _APP_JSON)
        async with safe_db_conn() as conn:
            await conn.execute(sql, *params)
        logger.debug(f"application updated: fields={sorted(partial)}", extra={"app_id": app_id})


# ---------------------------------------------------------------------------
# Orgs
# ---------------------------------------------------------------------------

_ORG_SELECT = "SELECT id, name, user_id, role, secrets, description FROM orgs"


def _row_to_org(row: asyncpg.Record) -> Organization:
    return Organization(
        id=row["id"],
        name=row["name"],
        user_id=row["user_id"],
        role=row["role"],
        secrets=_parse_json(row["secrets"]),
        description=row["description"] or "",
    )


class AsyncPostgresOrgRepository:
    """Org membership rows: one row per (org name, user), exactly one owner."""

    async def get_org_by_id(self, org_id: str) -> Organization | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(f"{_ORG_SELECT} WHERE id = $1", org_id)
        return _row_to_org(row) if row else None

    async def get_owner_org_by_name(self, name: str) -> Organization | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                f"{_ORG_SELECT} WHERE name = $1 AND role = $2",
                name,
                OrgRole.OWNER.value,
            )
        return _row_to_org(row) if row else None

    async def list_by_user_id(self, user_id: str) -> list[Organization]:
        async with safe_db_conn() as conn:
            rows = await conn.fetch(f"{_ORG_SELECT} WHERE user_id = $1 ORDER BY name", user_id)
        return [_row_to_org(r) for r in rows]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

_USER_COLUMNS = {"username", "email", "third_part"}
_USER_JSON = {"third_part": "jsonb"}


class AsyncPostgresUserRepository:

    async def get_user_by_id(self, user_id: str) -> User | None:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT id, username, email, password, secrets, third_part FROM users WHERE id = $1",
                user_id,
            )
        if not row:
            return None
        return User(
            id=row["id"],
            username=row["username"] or "",
            email=row["email"] or "",
            password=row["password"] or "",
            secrets=_parse_json(row["secrets"]),
            third_part=_parse_json(row["third_part"]),
        )

    async def update_user_by_id(self, user_id: str, partial: dict) -> None:
        sql, params = _build_update("users", user_id, partial, _USER_COLUMNS, _USER_JSON)
        async with safe_db_conn() as conn:
            await conn.execute(sql, *params)
