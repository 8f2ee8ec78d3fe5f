"""
描述: 健康检查端点
主要功能:
    - 服务健康状态 (Health Check)
    - 附带提醒调度器当前状态
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request


router = APIRouter()


# region 基础端点
@router.get("/api/health")
async def health(request: Request) -> dict[str, Any]:
    """Liveness 健康检查探针"""
    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    state = scheduler.state.value if scheduler is not None else "disabled"
    return {
        "status": "OK",
        "message": "TaskLoad reminder service is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler": state,
    }
# endregion
