"""
描述: Prometheus 指标收集模块
主要功能:
    - 定义提醒分发相关指标 (Counter, Histogram, Gauge)
    - 提供指标记录的工具函数
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


# ============================================
# region 指标定义
# ============================================
# 分发轮次计数
REMINDER_CYCLE_COUNT = Counter(
    "reminder_cycles_total",
    "Total reminder dispatch cycles by status",
    ["status"],
)

# 单个候选的处理结果
REMINDER_CANDIDATE_COUNT = Counter(
    "reminder_candidates_total",
    "Total reminder candidate outcomes by kind and outcome",
    ["kind", "outcome"],
)

# 因上一轮未结束而被丢弃的 tick
REMINDER_TICK_DROPPED_COUNT = Counter(
    "reminder_ticks_dropped_total",
    "Total scheduler ticks dropped because a cycle was still running",
)

REMINDER_CYCLE_DURATION = Histogram(
    "reminder_cycle_duration_seconds",
    "Reminder dispatch cycle duration in seconds",
    buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
)

REMINDER_SCHEDULER_STATE = Gauge(
    "reminder_scheduler_state",
    "Reminder scheduler state (1 for the current state)",
    ["state"],
)
# endregion
# ============================================


# region 指标记录工具函数
def record_cycle(status: str, duration: float) -> None:
    """记录分发轮次结果与耗时"""
    REMINDER_CYCLE_COUNT.labels(status=status).inc()
    REMINDER_CYCLE_DURATION.observe(max(0.0, float(duration)))


def record_candidate_outcome(kind: str, outcome: str) -> None:
    """记录候选处理结果"""
    REMINDER_CANDIDATE_COUNT.labels(kind=kind, outcome=outcome).inc()


def record_tick_dropped() -> None:
    """记录被丢弃的 tick"""
    REMINDER_TICK_DROPPED_COUNT.inc()


def record_scheduler_state(state: str, all_states: tuple[str, ...]) -> None:
    """记录调度器当前状态"""
    for name in all_states:
        REMINDER_SCHEDULER_STATE.labels(state=name).set(1 if name == state else 0)
# endregion


# region 指标导出
def get_metrics() -> bytes:
    """获取 Prometheus 格式指标数据"""
    return generate_latest()


def get_metrics_content_type() -> str:
    """获取指标数据的 Content-Type"""
    return CONTENT_TYPE_LATEST
# endregion
