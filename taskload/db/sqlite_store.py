"""
描述: SQLite 候选存储。
主要功能:
    - projects / tasks 两张表分别承载 DEADLINE / INSTANT 候选
    - reminder_sent 条件更新（WHERE reminder_sent = 旧值）保证只有一次生效
    - 同步 sqlite3 调用通过 asyncio.to_thread 暴露为异步接口
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from pathlib import Path
import sqlite3
from threading import Lock
from typing import Any
import uuid

from taskload.core.candidates import CandidateKind, ReminderCandidate
from taskload.db.store import CandidateQuery, check_updatable_field
from taskload.utils.exceptions import StoreQueryError, StoreUpdateError


_TABLES = {
    CandidateKind.DEADLINE: "projects",
    CandidateKind.INSTANT: "tasks",
}


class SQLiteReminderStore:
    """候选存储：SQLite 实现（进程内锁 + WAL）。"""

    def __init__(self, db_path: str | Path) -> None:
        self._lock = Lock()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    deadline TEXT,
                    user_email TEXT,
                    reminder_sent INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    deadline TEXT,
                    reminder_time TEXT,
                    user_email TEXT,
                    reminder_sent INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            for table in _TABLES.values():
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_reminder_sent ON {table} (reminder_sent)"
                )

    # region 写入（代替外部 CRUD 层）
    def add_project(
        self,
        title: str,
        deadline: date | datetime | str,
        user_email: str | None,
        project_id: str | None = None,
    ) -> str:
        new_id = project_id or str(uuid.uuid4())
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO projects(id, title, deadline, user_email, reminder_sent) VALUES(?, ?, ?, ?, 0)",
                    (new_id, title, _dump(deadline), user_email),
                )
        return new_id

    def add_task(
        self,
        title: str,
        reminder_time: datetime | str,
        user_email: str | None,
        deadline: datetime | str | None = None,
        task_id: str | None = None,
    ) -> str:
        new_id = task_id or str(uuid.uuid4())
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO tasks(id, title, deadline, reminder_time, user_email, reminder_sent) "
                    "VALUES(?, ?, ?, ?, ?, 0)",
                    (new_id, title, _dump(deadline), _dump(reminder_time), user_email),
                )
        return new_id
    # endregion

    def get(self, kind: CandidateKind, candidate_id: str) -> ReminderCandidate | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT * FROM {_TABLES[kind]} WHERE id = ?",
                    (candidate_id,),
                ).fetchone()
        return _row_to_candidate(kind, row) if row is not None else None

    def _query_sync(self, predicate: CandidateQuery) -> list[ReminderCandidate]:
        clauses: list[str] = []
        params: list[Any] = []
        if predicate.sent is not None:
            clauses.append("reminder_sent = ?")
            params.append(1 if predicate.sent else 0)
        if predicate.require_recipient:
            clauses.append("user_email IS NOT NULL AND TRIM(user_email) <> ''")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        limit = f" LIMIT {int(predicate.limit)}" if predicate.limit is not None else ""

        results: list[ReminderCandidate] = []
        with self._lock:
            with self._connect() as conn:
                for kind in predicate.kinds:
                    rows = conn.execute(f"SELECT * FROM {_TABLES[kind]}{where}{limit}", params).fetchall()
                    results.extend(_row_to_candidate(kind, row) for row in rows)
        return results

    async def query(self, predicate: CandidateQuery) -> list[ReminderCandidate]:
        try:
            return await asyncio.to_thread(self._query_sync, predicate)
        except sqlite3.Error as exc:
            raise StoreQueryError(str(exc)) from exc

    def _update_sync(self, kind: CandidateKind, candidate_id: str, expected: Any, new_value: Any) -> bool:
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE {_TABLES[kind]} SET reminder_sent = ? WHERE id = ? AND reminder_sent = ?",
                    (1 if new_value else 0, candidate_id, 1 if expected else 0),
                )
                return cursor.rowcount == 1

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
            return await asyncio.to_thread(self._update_sync, kind, candidate_id, expected, new_value)
        except sqlite3.Error as exc:
            raise StoreUpdateError(f"{kind.value}:{candidate_id}", str(exc)) from exc


def _dump(value: date | datetime | str | None) -> str | None:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _row_to_candidate(kind: CandidateKind, row: sqlite3.Row) -> ReminderCandidate:
    keys = row.keys()
    return ReminderCandidate(
        id=str(row["id"]),
        title=str(row["title"] or ""),
        kind=kind,
        recipient_address=row["user_email"],
        deadline_instant=row["deadline"],
        reminder_instant=row["reminder_time"] if "reminder_time" in keys else None,
        sent=bool(row["reminder_sent"]),
    )
