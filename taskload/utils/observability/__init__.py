from __future__ import annotations

from taskload.utils.observability.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_candidate_outcome,
    record_cycle,
    record_scheduler_state,
    record_tick_dropped,
)

__all__ = [
    "get_metrics",
    "get_metrics_content_type",
    "record_candidate_outcome",
    "record_cycle",
    "record_scheduler_state",
    "record_tick_dropped",
]
