"""
描述: 时钟抽象。
主要功能:
    - 提供当前时刻（UTC, aware datetime）
    - 提供可设置/可推进的固定时钟，用于无需真实等待的验证
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import threading
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """系统时钟：直接读取 OS 当前时间。"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    固定时钟。

    方针:
        - 时刻只在 set()/advance() 时变化
        - naive 时间按 UTC 解释
    """

    def __init__(self, now: datetime) -> None:
        self._lock = threading.Lock()
        self._now = _as_utc(now)

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, now: datetime) -> None:
        with self._lock:
            self._now = _as_utc(now)

    def advance(self, *, seconds: float = 0.0, minutes: float = 0.0, days: float = 0.0) -> datetime:
        delta = timedelta(seconds=seconds, minutes=minutes, days=days)
        if delta <= timedelta(0):
            raise ValueError("advance delta must be positive")
        with self._lock:
            self._now = self._now + delta
            return self._now


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
