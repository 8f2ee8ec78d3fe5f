"""
描述: 提醒候选存储接口。
主要功能:
    - 定义谓词查询与单字段条件更新接口
    - 提供进程内存实现（开发与测试用）
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Protocol

from taskload.core.candidates import ALL_KINDS, CandidateKind, ReminderCandidate


SENT_FIELD = "sent"
UPDATABLE_FIELDS = frozenset({SENT_FIELD})


@dataclass(frozen=True)
class CandidateQuery:
    """
    候选查询谓词

    属性:
        - sent: 期望的 sent 值，None 表示不过滤
        - require_recipient: 是否要求接收地址非空
        - kinds: 参与查询的候选类型
        - limit: 每种类型最多返回条数，None 表示不限
    """
    sent: bool | None = False
    require_recipient: bool = True
    kinds: tuple[CandidateKind, ...] = ALL_KINDS
    limit: int | None = None

    def matches(self, candidate: ReminderCandidate) -> bool:
        if candidate.kind not in self.kinds:
            return False
        if self.sent is not None and bool(candidate.sent) is not self.sent:
            return False
        if self.require_recipient and not candidate.has_recipient():
            return False
        return True


class ReminderStore(Protocol):
    """
    提醒候选存储接口

    方法:
        - query: 按谓词读取候选
        - conditional_update: 仅当字段旧值等于 expected 时写入，返回是否生效
    """
    async def query(self, predicate: CandidateQuery) -> list[ReminderCandidate]: ...

    async def conditional_update(
        self,
        kind: CandidateKind,
        candidate_id: str,
        field: str,
        expected: Any,
        new_value: Any,
    ) -> bool: ...


def check_updatable_field(field: str) -> None:
    if field not in UPDATABLE_FIELDS:
        raise ValueError(f"field is not updatable: {field}")


class InMemoryReminderStore:
    """内存中的候选存储实现（返回副本，避免调用方共享可变状态）。"""

    def __init__(self, candidates: list[ReminderCandidate] | None = None) -> None:
        self._items: dict[tuple[CandidateKind, str], ReminderCandidate] = {}
        self._lock = asyncio.Lock()
        for candidate in candidates or []:
            self.add(candidate)

    def add(self, candidate: ReminderCandidate) -> None:
        if not candidate.id:
            raise ValueError("candidate id is required")
        self._items[(candidate.kind, candidate.id)] = replace(candidate)

    def get(self, kind: CandidateKind, candidate_id: str) -> ReminderCandidate | None:
        item = self._items.get((kind, candidate_id))
        return replace(item) if item is not None else None

    async def query(self, predicate: CandidateQuery) -> list[ReminderCandidate]:
        async with self._lock:
            results: list[ReminderCandidate] = []
            per_kind: dict[CandidateKind, int] = {}
            for item in self._items.values():
                if not predicate.matches(item):
                    continue
                count = per_kind.get(item.kind, 0)
                if predicate.limit is not None and count >= predicate.limit:
                    continue
                per_kind[item.kind] = count + 1
                results.append(replace(item))
            return results

    async def conditional_update(
        self,
        kind: CandidateKind,
        candidate_id: str,
        field: str,
        expected: Any,
        new_value: Any,
    ) -> bool:
        check_updatable_field(field)
        async with self._lock:
            item = self._items.get((kind, candidate_id))
            if item is None or getattr(item, field) != expected:
                return False
            setattr(item, field, new_value)
            return True
