"""
描述: TaskLoad 提醒服务主入口
主要功能:
    - 按配置组装存储、通知通道、分发轮次与调度器
    - FastAPI 应用初始化（健康检查与指标）
    - 优雅停止 (等待进行中的分发轮次完成)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Any, AsyncGenerator

from fastapi import FastAPI

from taskload import __version__
from taskload.api.health import router as health_router
from taskload.api.metrics import router as metrics_router
from taskload.config import Settings, get_settings
from taskload.core.candidates import CandidateKind
from taskload.core.clock import Clock, SystemClock
from taskload.db.postgres import PostgresReminderStore
from taskload.db.sqlite_store import SQLiteReminderStore
from taskload.db.store import InMemoryReminderStore, ReminderStore
from taskload.jobs.cycle import DispatchCycle, metrics_observer
from taskload.jobs.dispatchers.notifier import ReminderNotifier
from taskload.jobs.dispatchers.transports import NotificationTransport, build_transport
from taskload.jobs.schedulers.reminder_scheduler import ReminderScheduler
from taskload.jobs.selector import CandidateSelector

logger = logging.getLogger(__name__)


# region 组件装配
def build_store(settings: Settings) -> ReminderStore:
    backend = settings.store.backend
    if backend == "postgres":
        return PostgresReminderStore(settings.store.postgres)
    if backend == "memory":
        return InMemoryReminderStore()
    return SQLiteReminderStore(settings.store.sqlite.path)


def build_cycle(
    settings: Settings,
    store: ReminderStore,
    transport: NotificationTransport,
    clock: Clock | None = None,
) -> DispatchCycle:
    reminders = settings.reminders
    tz = reminders.tzinfo()
    selector = CandidateSelector(
        store,
        kinds=[CandidateKind(kind) for kind in reminders.kinds],
        limit=reminders.batch_limit,
    )
    notifier = ReminderNotifier(transport, timeout_seconds=reminders.send_timeout_seconds, tz=tz)
    return DispatchCycle(
        selector=selector,
        notifier=notifier,
        store=store,
        clock=clock or SystemClock(),
        tz=tz,
        max_concurrency=reminders.max_concurrency,
        observer=metrics_observer,
    )


def build_scheduler(settings: Settings, cycle: DispatchCycle, scheduler: Any | None = None) -> ReminderScheduler:
    return ReminderScheduler(
        cycle,
        interval_seconds=settings.reminders.interval_seconds,
        run_on_start=settings.reminders.run_on_start,
        scheduler=scheduler,
    )


async def close_resources(*resources: Any) -> None:
    for resource in resources:
        close = getattr(resource, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception:
            logger.warning("resource close failed", exc_info=True)
# endregion


# region FastAPI 应用
def create_app(
    settings: Settings | None = None,
    *,
    store: ReminderStore | None = None,
    transport: NotificationTransport | None = None,
    clock: Clock | None = None,
    scheduler: Any | None = None,
) -> FastAPI:
    """
    创建 FastAPI 应用

    参数:
        settings: 配置对象，缺省时读取全局配置
        store / transport / clock / scheduler: 可注入的组件（测试或嵌入使用）
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        应用生命周期回调

        功能:
            - Startup: 组装组件、启动提醒调度器
            - Shutdown: 停止调度器（等待进行中的轮次），关闭连接
        """
        app.state.reminder_scheduler = None
        resources: list[Any] = []
        if settings.reminders.enabled:
            active_store = store or build_store(settings)
            if isinstance(active_store, PostgresReminderStore):
                await active_store.ensure_schema()
            active_transport = transport or build_transport(settings.transport)
            resources = [active_store, active_transport]

            cycle = build_cycle(settings, active_store, active_transport, clock)
            reminder_scheduler = build_scheduler(settings, cycle, scheduler)
            reminder_scheduler.start()
            app.state.reminder_scheduler = reminder_scheduler
        else:
            logger.info("reminder dispatch disabled", extra={"event_code": "reminder.scheduler.disabled"})
        logger.info("TaskLoad reminder service started")

        yield

        reminder_scheduler = app.state.reminder_scheduler
        if reminder_scheduler is not None:
            await reminder_scheduler.stop()
        await close_resources(*resources)
        logger.info("TaskLoad reminder service shutdown complete")

    app = FastAPI(
        title="TaskLoad Reminders",
        version=__version__,
        description="项目截止与任务提醒的周期分发服务",
        lifespan=lifespan,
    )
    app.include_router(health_router)
    app.include_router(metrics_router)
    return app
# endregion
