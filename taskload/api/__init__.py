from __future__ import annotations

from taskload.api.health import router as health_router
from taskload.api.metrics import router as metrics_router

__all__ = ["health_router", "metrics_router"]
