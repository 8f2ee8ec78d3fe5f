"""
描述: 提醒窗口判定（纯函数）。
主要功能:
    - DEADLINE: 截止时刻落在 [明日零点, 后日零点) 内即入选
    - INSTANT: 提醒时刻 <= 当前时刻即入选
    - 时间戳无法解析时一律判定为不入选（fail-closed）
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
import math
import re

from taskload.core.candidates import CandidateKind, RawInstant, ReminderCandidate
from taskload.utils.exceptions import MalformedTimestampError


IN_WINDOW = "in_window"
DUE = "due"
OUTSIDE_WINDOW = "outside_window"
NOT_DUE = "not_due"
MALFORMED = "malformed"

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class WindowDecision:
    eligible: bool
    reason: str
    detail: str = ""


def parse_instant(value: RawInstant, tz: tzinfo = timezone.utc) -> datetime:
    """
    将存储层原始时间值解析为 aware datetime。

    规则:
        - naive datetime 按 tz 解释
        - date / "YYYY-MM-DD" 视为 tz 当日零点
        - ISO-8601 字符串（允许 Z 后缀）
        - int/float 视为 epoch 秒
        - 其他一律抛出 MalformedTimestampError
    """
    if value is None or isinstance(value, bool):
        raise MalformedTimestampError(value, "missing or non-temporal value")

    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=tz)

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=tz)

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise MalformedTimestampError(value, "non-finite epoch value")
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedTimestampError(value, str(exc)) from exc

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise MalformedTimestampError(value, "empty string")
        try:
            if _DATE_ONLY.match(text):
                return datetime.combine(date.fromisoformat(text), time.min, tzinfo=tz)
            if text[-1] in ("Z", "z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedTimestampError(value, str(exc)) from exc
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=tz)

    raise MalformedTimestampError(value, f"unsupported type {type(value).__name__}")


def tomorrow_window(now: datetime, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """返回 [明日零点, 后日零点)，零点按 tz 计算。"""
    aware_now = now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)
    today = aware_now.astimezone(tz).date()
    start = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=2), time.min, tzinfo=tz)
    return start, end


def evaluate(candidate: ReminderCandidate, now: datetime, tz: tzinfo = timezone.utc) -> WindowDecision:
    try:
        instant = parse_instant(candidate.governing_instant, tz)
    except MalformedTimestampError as exc:
        return WindowDecision(eligible=False, reason=MALFORMED, detail=exc.message)

    if candidate.kind is CandidateKind.DEADLINE:
        start, end = tomorrow_window(now, tz)
        if start <= instant < end:
            return WindowDecision(eligible=True, reason=IN_WINDOW)
        return WindowDecision(
            eligible=False,
            reason=OUTSIDE_WINDOW,
            detail=f"{instant.isoformat()} not in [{start.isoformat()}, {end.isoformat()})",
        )

    if instant <= now:
        return WindowDecision(eligible=True, reason=DUE)
    return WindowDecision(eligible=False, reason=NOT_DUE, detail=f"due at {instant.isoformat()}")


def is_eligible(candidate: ReminderCandidate, now: datetime, tz: tzinfo = timezone.utc) -> bool:
    return evaluate(candidate, now, tz).eligible
