"""
描述: 提醒分发轮次
主要功能:
    - 单次捕获当前时刻，选取候选并逐个判定窗口
    - 发送成功后以条件更新提交 sent 标记（竞争失败记为 already_handled）
    - 结构化日志、指标与观察者事件
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
import logging
import time
from typing import Any, Callable

from taskload.core.candidates import ReminderCandidate
from taskload.core.clock import Clock
from taskload.core.window import MALFORMED, evaluate
from taskload.db.store import SENT_FIELD, ReminderStore
from taskload.jobs.dispatchers.notifier import ReminderNotifier
from taskload.jobs.selector import CandidateSelector
from taskload.utils.exceptions import StoreQueryError, StoreUpdateError
from taskload.utils.logger import clear_dispatch_context, generate_cycle_id, set_dispatch_context
from taskload.utils.observability.metrics import record_candidate_outcome, record_cycle

logger = logging.getLogger(__name__)


class CycleOutcome(str, Enum):
    """单个候选在一轮中的处理结果。"""

    SKIPPED = "skipped"
    MALFORMED = "malformed"
    SENT = "sent"
    ALREADY_HANDLED = "already_handled"
    TRANSPORT_FAILED = "transport_failed"
    COMMIT_FAILED = "commit_failed"


EVENT_CYCLE_ABORTED = "reminder.cycle.aborted"

_EVENT_CODES = {
    CycleOutcome.MALFORMED: "reminder.candidate.malformed",
    CycleOutcome.SENT: "reminder.candidate.sent",
    CycleOutcome.ALREADY_HANDLED: "reminder.candidate.already_handled",
    CycleOutcome.TRANSPORT_FAILED: "reminder.candidate.transport_failed",
    CycleOutcome.COMMIT_FAILED: "reminder.candidate.commit_failed",
}


@dataclass(frozen=True)
class DispatchEvent:
    """
    分发事件（交给观察者，用于重试上限 / 死信等扩展）

    属性:
        - event_code: 事件码
        - candidate_key: 候选标识，轮次级事件为空
        - kind: 候选类型
        - detail: 附加说明
    """
    event_code: str
    candidate_key: str = ""
    kind: str = ""
    detail: str = ""


DispatchObserver = Callable[[DispatchEvent], None]


@dataclass
class CandidateResult:
    candidate: ReminderCandidate
    outcome: CycleOutcome
    detail: str = ""


@dataclass
class CycleReport:
    """
    一轮分发的汇总

    属性:
        - cycle_id: 轮次 ID
        - started_at / finished_at: 起止时刻
        - selected: 选取到的候选数（去重后）
        - counts: 各结果的计数
        - aborted: 查询失败导致整轮放弃
    """
    cycle_id: str
    started_at: datetime
    finished_at: datetime | None = None
    selected: int = 0
    counts: dict[CycleOutcome, int] = field(default_factory=lambda: {outcome: 0 for outcome in CycleOutcome})
    aborted: bool = False
    error: str = ""

    def count(self, outcome: CycleOutcome) -> int:
        return self.counts.get(outcome, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "selected": self.selected,
            "counts": {outcome.value: value for outcome, value in self.counts.items()},
            "aborted": self.aborted,
            "error": self.error,
        }


def metrics_observer(event: DispatchEvent) -> None:
    """默认观察者：按候选结果记录指标"""
    if not event.candidate_key:
        return
    outcome = event.event_code.rsplit(".", 1)[-1]
    record_candidate_outcome(event.kind or "unknown", outcome)


class DispatchCycle:
    """
    提醒分发轮次

    功能:
        - 选取候选 -> 窗口判定 -> 发送 -> 条件提交
        - 同一轮内每个候选 key 只处理一次
        - 结果在全部候选结束后再汇总
    """
    def __init__(
        self,
        selector: CandidateSelector,
        notifier: ReminderNotifier,
        store: ReminderStore,
        clock: Clock,
        tz: tzinfo = timezone.utc,
        max_concurrency: int = 1,
        observer: DispatchObserver | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._selector = selector
        self._notifier = notifier
        self._store = store
        self._clock = clock
        self._tz = tz
        self._max_concurrency = int(max_concurrency)
        self._observer = observer

    async def run(self) -> CycleReport:
        cycle_id = generate_cycle_id()
        set_dispatch_context(cycle_id=cycle_id)
        started = time.monotonic()
        now = self._clock.now()
        report = CycleReport(cycle_id=cycle_id, started_at=now)
        try:
            try:
                candidates = await self._selector.select()
            except StoreQueryError as exc:
                logger.error(
                    "reminder cycle aborted: candidate query failed",
                    extra={"event_code": EVENT_CYCLE_ABORTED, "error": exc.message},
                )
                self._emit(DispatchEvent(event_code=EVENT_CYCLE_ABORTED, detail=exc.message))
                report.aborted = True
                report.error = exc.message
                report.finished_at = self._clock.now()
                record_cycle("aborted", time.monotonic() - started)
                return report

            unique = _dedupe(candidates)
            report.selected = len(unique)
            results = await self._process_all(unique, now)

            for result in results:
                report.counts[result.outcome] = report.counts.get(result.outcome, 0) + 1
            report.finished_at = self._clock.now()
            record_cycle("completed", time.monotonic() - started)
            logger.info(
                "reminder cycle completed",
                extra={
                    "event_code": "reminder.cycle.completed",
                    "selected": report.selected,
                    "sent": report.count(CycleOutcome.SENT),
                    "failed": report.count(CycleOutcome.TRANSPORT_FAILED),
                },
            )
            return report
        finally:
            clear_dispatch_context()

    async def _process_all(self, candidates: list[ReminderCandidate], now: datetime) -> list[CandidateResult]:
        if self._max_concurrency == 1:
            return [await self._process(candidate, now) for candidate in candidates]

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(candidate: ReminderCandidate) -> CandidateResult:
            async with semaphore:
                return await self._process(candidate, now)

        return list(await asyncio.gather(*(bounded(candidate) for candidate in candidates)))

    async def _process(self, candidate: ReminderCandidate, now: datetime) -> CandidateResult:
        key = candidate.key
        set_dispatch_context(candidate_key=key)

        decision = evaluate(candidate, now, self._tz)
        if decision.reason == MALFORMED:
            logger.warning(
                "reminder candidate has a malformed timestamp, skipped",
                extra={"event_code": _EVENT_CODES[CycleOutcome.MALFORMED], "candidate_key": key, "detail": decision.detail},
            )
            return self._finish(candidate, CycleOutcome.MALFORMED, decision.detail)
        if not decision.eligible:
            return CandidateResult(candidate=candidate, outcome=CycleOutcome.SKIPPED, detail=decision.reason)

        try:
            delivered = await self._notifier.send(candidate)
        except Exception as exc:
            logger.warning(
                "notifier raised, treated as failure",
                extra={"event_code": _EVENT_CODES[CycleOutcome.TRANSPORT_FAILED], "candidate_key": key},
                exc_info=True,
            )
            return self._finish(candidate, CycleOutcome.TRANSPORT_FAILED, str(exc))

        if not delivered:
            logger.warning(
                "reminder notification failed, will retry next cycle",
                extra={"event_code": _EVENT_CODES[CycleOutcome.TRANSPORT_FAILED], "candidate_key": key},
            )
            return self._finish(candidate, CycleOutcome.TRANSPORT_FAILED)

        try:
            applied = await self._store.conditional_update(candidate.kind, candidate.id, SENT_FIELD, False, True)
        except StoreUpdateError as exc:
            logger.error(
                "notification sent but sent flag not committed, duplicate notification risk",
                extra={"event_code": _EVENT_CODES[CycleOutcome.COMMIT_FAILED], "candidate_key": key, "error": exc.message},
            )
            return self._finish(candidate, CycleOutcome.COMMIT_FAILED, exc.message)
        except Exception as exc:
            logger.error(
                "notification sent but sent flag not committed, duplicate notification risk",
                extra={"event_code": _EVENT_CODES[CycleOutcome.COMMIT_FAILED], "candidate_key": key, "error": repr(exc)},
                exc_info=True,
            )
            return self._finish(candidate, CycleOutcome.COMMIT_FAILED, repr(exc))

        if not applied:
            logger.info(
                "reminder already handled by another cycle",
                extra={"event_code": _EVENT_CODES[CycleOutcome.ALREADY_HANDLED], "candidate_key": key},
            )
            return self._finish(candidate, CycleOutcome.ALREADY_HANDLED)

        logger.info(
            "reminder sent",
            extra={"event_code": _EVENT_CODES[CycleOutcome.SENT], "candidate_key": key},
        )
        return self._finish(candidate, CycleOutcome.SENT)

    def _finish(self, candidate: ReminderCandidate, outcome: CycleOutcome, detail: str = "") -> CandidateResult:
        self._emit(
            DispatchEvent(
                event_code=_EVENT_CODES[outcome],
                candidate_key=candidate.key,
                kind=candidate.kind.value,
                detail=detail,
            )
        )
        return CandidateResult(candidate=candidate, outcome=outcome, detail=detail)

    def _emit(self, event: DispatchEvent) -> None:
        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception:
            logger.warning(
                "dispatch observer failed",
                extra={"event_code": "reminder.observer.failed", "observed": event.event_code},
                exc_info=True,
            )


def _dedupe(candidates: list[ReminderCandidate]) -> list[ReminderCandidate]:
    seen: set[str] = set()
    unique: list[ReminderCandidate] = []
    for candidate in candidates:
        if candidate.key in seen:
            continue
        seen.add(candidate.key)
        unique.append(candidate)
    return unique
