"""
描述: 提醒分发调度器
主要功能:
    - APScheduler 固定间隔触发分发轮次
    - 上一轮未结束时丢弃新的 tick
    - 停止时等待进行中的轮次完成
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from taskload.jobs.cycle import CycleReport, DispatchCycle
from taskload.utils.exceptions import SchedulerStoppedError
from taskload.utils.observability.metrics import record_scheduler_state, record_tick_dropped

logger = logging.getLogger(__name__)

JOB_ID = "reminder_dispatch"


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


_ALL_STATES = tuple(state.value for state in SchedulerState)


class ReminderScheduler:
    """Run one DispatchCycle per interval tick, never two at once."""

    def __init__(
        self,
        cycle: DispatchCycle,
        interval_seconds: float = 300.0,
        run_on_start: bool = False,
        scheduler: Any | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._cycle = cycle
        self._interval_seconds = float(interval_seconds)
        self._run_on_start = bool(run_on_start)
        self._scheduler = scheduler if scheduler is not None else AsyncIOScheduler(timezone=timezone.utc)
        self._state = SchedulerState.IDLE
        self._started = False
        self._current: asyncio.Task[CycleReport | None] | None = None
        record_scheduler_state(self._state.value, _ALL_STATES)

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    def start(self) -> None:
        if self._state is SchedulerState.STOPPED:
            raise SchedulerStoppedError()
        if self._started:
            return

        job_kwargs: dict[str, Any] = {}
        if self._run_on_start:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self._interval_seconds,
            id=JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            **job_kwargs,
        )
        self._scheduler.start()
        self._started = True
        logger.info(
            "reminder scheduler started",
            extra={
                "event_code": "reminder.scheduler.started",
                "interval_seconds": self._interval_seconds,
                "run_on_start": self._run_on_start,
            },
        )

    async def tick(self) -> CycleReport | None:
        if self._state is SchedulerState.STOPPED:
            return None
        if self._state is SchedulerState.RUNNING:
            record_tick_dropped()
            logger.info(
                "previous reminder cycle still running, tick dropped",
                extra={"event_code": "reminder.scheduler.tick_dropped"},
            )
            return None

        self._set_state(SchedulerState.RUNNING)
        task = asyncio.create_task(self._run_cycle())
        self._current = task
        task.add_done_callback(self._on_cycle_done)
        return await asyncio.shield(task)

    async def stop(self) -> None:
        if self._state is SchedulerState.STOPPED:
            return
        self._set_state(SchedulerState.STOPPED)
        if self._started:
            self._scheduler.shutdown(wait=False)
            await asyncio.sleep(0)

        task = self._current
        if task is not None and not task.done():
            logger.info(
                "waiting for in-flight reminder cycle",
                extra={"event_code": "reminder.scheduler.draining"},
            )
            await asyncio.shield(task)
        logger.info("reminder scheduler stopped", extra={"event_code": "reminder.scheduler.stopped"})

    async def _run_cycle(self) -> CycleReport | None:
        try:
            return await self._cycle.run()
        except Exception:
            logger.exception(
                "reminder cycle crashed",
                extra={"event_code": "reminder.scheduler.cycle_crashed"},
            )
            return None

    def _on_cycle_done(self, task: asyncio.Task[CycleReport | None]) -> None:
        if self._current is task:
            self._current = None
        if self._state is SchedulerState.RUNNING:
            self._set_state(SchedulerState.IDLE)

    def _set_state(self, state: SchedulerState) -> None:
        self._state = state
        record_scheduler_state(state.value, _ALL_STATES)
