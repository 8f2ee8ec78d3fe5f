"""
描述: 候选选择器
主要功能:
    - 以固定谓词 (sent=False, 接收地址非空) 查询存储
    - 复核返回行，丢弃违反谓词的记录
"""

from __future__ import annotations

import logging
from typing import Sequence

from taskload.core.candidates import ALL_KINDS, CandidateKind, ReminderCandidate
from taskload.db.store import CandidateQuery, ReminderStore
from taskload.utils.exceptions import StoreQueryError

logger = logging.getLogger(__name__)


class CandidateSelector:
    """按未发送且有接收地址的条件读取候选。"""

    def __init__(
        self,
        store: ReminderStore,
        kinds: Sequence[CandidateKind] = ALL_KINDS,
        limit: int | None = None,
    ) -> None:
        self._store = store
        self._query = CandidateQuery(
            sent=False,
            require_recipient=True,
            kinds=tuple(CandidateKind(kind) for kind in kinds),
            limit=limit,
        )

    @property
    def query(self) -> CandidateQuery:
        return self._query

    async def select(self) -> list[ReminderCandidate]:
        try:
            rows = await self._store.query(self._query)
        except StoreQueryError:
            raise
        except Exception as exc:
            raise StoreQueryError(f"{type(exc).__name__}: {exc}") from exc

        selected: list[ReminderCandidate] = []
        for row in rows or []:
            if not self._query.matches(row):
                logger.warning(
                    "store returned a row violating the candidate predicate, dropped",
                    extra={
                        "event_code": "reminder.selector.predicate_violation",
                        "candidate_key": row.key,
                    },
                )
                continue
            selected.append(row)
        return selected
