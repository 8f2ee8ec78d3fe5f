"""
描述: PostgreSQL 候选存储
主要功能:
    - 连接池管理
    - 基于 projects / tasks 表的候选查询
    - reminder_sent 条件更新（WHERE reminder_sent = $expected）
"""

from __future__ import annotations

import asyncio
from typing import Any

import asyncpg

from taskload.core.candidates import CandidateKind, ReminderCandidate
from taskload.db.store import CandidateQuery, check_updatable_field
from taskload.utils.exceptions import StoreQueryError, StoreUpdateError


_SELECTS = {
    CandidateKind.DEADLINE: "SELECT id::text AS id, title, deadline, NULL AS reminder_time, "
    "user_email, reminder_sent FROM projects",
    CandidateKind.INSTANT: "SELECT id::text AS id, title, deadline, reminder_time, "
    "user_email, reminder_sent FROM tasks",
}

_TABLES = {
    CandidateKind.DEADLINE: "projects",
    CandidateKind.INSTANT: "tasks",
}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        deadline TEXT,
        user_email TEXT,
        reminder_sent BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        deadline TIMESTAMPTZ,
        reminder_time TIMESTAMPTZ,
        user_email TEXT,
        reminder_sent BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_projects_reminder_sent ON projects (reminder_sent)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_reminder_sent ON tasks (reminder_sent)",
)


class PostgresReminderStore:
    def __init__(self, settings: Any, pool: Any | None = None) -> None:
        self._settings = {
            "dsn": getattr(settings, "dsn", ""),
            "min_size": int(getattr(settings, "min_size", 1)),
            "max_size": int(getattr(settings, "max_size", 5)),
            "timeout": int(getattr(settings, "timeout", 10)),
        }
        self._pool: Any | None = pool
        self._lock = asyncio.Lock()

    async def _ensure_pool(self) -> Any:
        if self._pool:
            return self._pool

        async with self._lock:
            if self._pool:
                return self._pool

            self._pool = await asyncpg.create_pool(
                dsn=self._settings["dsn"],
                min_size=self._settings["min_size"],
                max_size=self._settings["max_size"],
                command_timeout=self._settings["timeout"],
            )
            return self._pool

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            for statement in _SCHEMA:
                await conn.execute(statement)

    async def query(self, predicate: CandidateQuery) -> list[ReminderCandidate]:
        clauses: list[str] = []
        params: list[Any] = []
        if predicate.sent is not None:
            params.append(bool(predicate.sent))
            clauses.append(f"reminder_sent = ${len(params)}")
        if predicate.require_recipient:
            clauses.append("user_email IS NOT NULL AND btrim(user_email) <> ''")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        limit = f" LIMIT {int(predicate.limit)}" if predicate.limit is not None else ""

        try:
            pool = await self._ensure_pool()
            results: list[ReminderCandidate] = []
            async with pool.acquire() as conn:
                for kind in predicate.kinds:
                    rows = await conn.fetch(f"{_SELECTS[kind]}{where}{limit}", *params)
                    results.extend(_row_to_candidate(kind, dict(row)) for row in rows)
            return results
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            raise StoreQueryError(str(exc)) from exc

    async def conditional_update(
        self,
        kind: CandidateKind,
        candidate_id: str,
        field: str,
        expected: Any,
        new_value: Any,
    ) -> bool:
        check_updatable_field(field)
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                result = await conn.execute(
                    f"""
                    UPDATE {_TABLES[kind]}
                    SET reminder_sent = $1
                    WHERE id = $2 AND reminder_sent = $3
                    """,
                    bool(new_value),
                    str(candidate_id),
                    bool(expected),
                )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            raise StoreUpdateError(f"{kind.value}:{candidate_id}", str(exc)) from exc
        return str(result).strip() == "UPDATE 1"


def _row_to_candidate(kind: CandidateKind, row: dict[str, Any]) -> ReminderCandidate:
    return ReminderCandidate(
        id=str(row.get("id") or ""),
        title=str(row.get("title") or ""),
        kind=kind,
        recipient_address=row.get("user_email"),
        deadline_instant=row.get("deadline"),
        reminder_instant=row.get("reminder_time"),
        sent=bool(row.get("reminder_sent")),
    )
