"""
描述: 提醒候选数据模型。
主要功能:
    - 项目（截止日期）与任务（提醒时刻）统一为带 kind 标签的 ReminderCandidate
    - 提供序列化与反序列化
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Union


RawInstant = Union[datetime, date, str, int, float, None]


class CandidateKind(str, Enum):
    """决定窗口规则的候选类型。"""

    DEADLINE = "deadline"
    INSTANT = "instant"


ALL_KINDS: tuple[CandidateKind, ...] = (CandidateKind.DEADLINE, CandidateKind.INSTANT)


@dataclass
class ReminderCandidate:
    """
    提醒候选

    属性:
        - id: 存储层分配的稳定 ID（在同一 kind 内唯一）
        - title: 展示标题
        - kind: 候选类型
        - recipient_address: 通知接收地址，为空则永不入选
        - deadline_instant: DEADLINE 类型的截止时刻（INSTANT 类型仅用于文案）
        - reminder_instant: INSTANT 类型的提醒时刻
        - sent: 是否已发送（只能 False -> True）
    """
    id: str
    title: str
    kind: CandidateKind
    recipient_address: str | None = None
    deadline_instant: RawInstant = None
    reminder_instant: RawInstant = None
    sent: bool = False

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @property
    def governing_instant(self) -> RawInstant:
        if self.kind is CandidateKind.DEADLINE:
            return self.deadline_instant
        return self.reminder_instant

    def has_recipient(self) -> bool:
        return bool(str(self.recipient_address or "").strip())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "kind": self.kind.value,
            "recipient_address": self.recipient_address,
            "deadline_instant": _dump_instant(self.deadline_instant),
            "reminder_instant": _dump_instant(self.reminder_instant),
            "sent": bool(self.sent),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ReminderCandidate:
        recipient_raw = payload.get("recipient_address")
        return cls(
            id=str(payload.get("id") or "").strip(),
            title=str(payload.get("title") or ""),
            kind=CandidateKind(str(payload.get("kind") or CandidateKind.DEADLINE.value)),
            recipient_address=str(recipient_raw) if recipient_raw is not None else None,
            deadline_instant=payload.get("deadline_instant"),
            reminder_instant=payload.get("reminder_instant"),
            sent=bool(payload.get("sent", False)),
        )


def _dump_instant(value: RawInstant) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value
