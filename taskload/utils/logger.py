"""
描述: 结构化日志工具库
主要功能:
    - JSON 格式结构化输出 (Structured Logging)
    - 自动注入分发上下文 (Cycle ID, Candidate Key)
    - 开发环境使用简单文本格式
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from typing import Any

from taskload.config import LoggingSettings


# region 上下文变量 (Context Vars)
cycle_id_var: ContextVar[str] = ContextVar("cycle_id", default="")
candidate_key_var: ContextVar[str] = ContextVar("candidate_key", default="")
# endregion


_RESERVED_ATTRS = frozenset(
    (
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message", "asctime",
    )
)


# region 日志 Formatter
class StructuredJsonFormatter(logging.Formatter):
    """
    JSON 结构化日志格式化器

    功能:
        - 将日志记录转换为 JSON 行
        - 自动注入当前分发上下文
        - 合并 extra 字段（event_code / candidate_key 等）
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if cycle_id := cycle_id_var.get():
            payload["cycle_id"] = cycle_id
        if candidate_key := candidate_key_var.get():
            payload["candidate_key"] = candidate_key

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class SimpleFormatter(logging.Formatter):
    """简单文本格式化器（开发环境用）"""

    def format(self, record: logging.LogRecord) -> str:
        base = f"[{self.formatTime(record)}] {record.levelname:5} {record.name}: {record.getMessage()}"

        context_parts = []
        if cycle_id := cycle_id_var.get():
            context_parts.append(f"cycle={cycle_id}")
        candidate_key = getattr(record, "candidate_key", "") or candidate_key_var.get()
        if candidate_key:
            context_parts.append(f"candidate={candidate_key}")
        if context_parts:
            base += f" ({', '.join(context_parts)})"

        event_code = getattr(record, "event_code", "")
        if event_code:
            base += f" [{event_code}]"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base
# endregion


# region 上下文管理
def set_dispatch_context(cycle_id: str | None = None, candidate_key: str | None = None) -> None:
    """
    设置当前分发上下文

    参数:
        cycle_id: 分发轮次 ID
        candidate_key: 当前处理的候选标识
    """
    if cycle_id:
        cycle_id_var.set(cycle_id)
    if candidate_key:
        candidate_key_var.set(candidate_key)


def clear_dispatch_context() -> None:
    """清除分发上下文"""
    cycle_id_var.set("")
    candidate_key_var.set("")


def generate_cycle_id() -> str:
    """生成分发轮次 ID"""
    return str(uuid.uuid4())[:12]
# endregion


# region 初始化配置
def setup_logging(settings: LoggingSettings) -> None:
    """
    初始化全局日志配置

    参数:
        settings: 日志配置对象

    动作:
        - 配置 Root Logger 级别
        - 设置 StreamHandler 及 Formatter (JSON/Text)
        - 调整第三方库日志级别以减少噪音
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if settings.format == "json":
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(SimpleFormatter())

    logging.basicConfig(level=level, handlers=[handler], force=True)

    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
# endregion
