"""
描述: 监控指标端点
主要功能:
    - 暴露 Prometheus 格式监控指标
"""

from __future__ import annotations

from fastapi import APIRouter, Response

from taskload.utils.observability.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


# region 监控指标
@router.get("/metrics")
async def metrics() -> Response:
    """获取 Prometheus 格式指标数据（分发轮次、候选结果、调度器状态）"""
    data = get_metrics()
    return Response(content=data, media_type=get_metrics_content_type())
# endregion
