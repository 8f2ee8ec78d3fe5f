"""
异常处理模块

统一定义提醒分发子系统的异常类，便于精确捕获和处理
"""

from __future__ import annotations

from typing import Any


# ============================================
# region 基础异常
# ============================================
class TaskLoadError(Exception):
    """TaskLoad 基础异常类"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigError(TaskLoadError):
    """配置非法"""

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(message, code="CONFIG_ERROR", details={"field": field} if field else None)
# endregion
# ============================================


# ============================================
# region 存储相关异常
# ============================================
class StoreError(TaskLoadError):
    """存储层异常"""

    def __init__(
        self,
        message: str,
        code: str = "STORE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code, details)


class StoreQueryError(StoreError):
    """候选查询失败，整轮分发放弃"""

    def __init__(self, cause: str) -> None:
        super().__init__(
            message=f"candidate query failed: {cause}",
            code="STORE_QUERY_ERROR",
            details={"cause": cause},
        )


class StoreUpdateError(StoreError):
    """发送成功后提交 sent 标记失败（存在重复通知风险）"""

    def __init__(self, candidate_key: str, cause: str) -> None:
        super().__init__(
            message=f"conditional update failed for {candidate_key}: {cause}",
            code="STORE_UPDATE_ERROR",
            details={"candidate_key": candidate_key, "cause": cause},
        )
        self.candidate_key = candidate_key
# endregion
# ============================================


# ============================================
# region 通知与时间相关异常
# ============================================
class TransportError(TaskLoadError):
    """通知通道发送失败"""

    def __init__(self, transport: str, cause: str) -> None:
        super().__init__(
            message=f"{transport} transport failed: {cause}",
            code="TRANSPORT_FAILURE",
            details={"transport": transport, "cause": cause},
        )
        self.transport = transport


class MalformedTimestampError(TaskLoadError):
    """时间戳无法解析（按不可发送处理）"""

    def __init__(self, value: Any, cause: str = "") -> None:
        super().__init__(
            message=f"malformed timestamp: {value!r}",
            code="MALFORMED_TIMESTAMP",
            details={"value": repr(value), "cause": cause},
        )
        self.value = value
# endregion
# ============================================


# ============================================
# region 调度器相关异常
# ============================================
class SchedulerStoppedError(TaskLoadError):
    """调度器已停止，不可再次启动"""

    def __init__(self) -> None:
        super().__init__(
            message="reminder scheduler is stopped and cannot be restarted",
            code="SCHEDULER_STOPPED",
        )
# endregion
# ============================================
