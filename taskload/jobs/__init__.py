"""Background reminder dispatch jobs."""

from __future__ import annotations

from taskload.jobs.cycle import CycleOutcome, CycleReport, DispatchCycle, DispatchEvent, metrics_observer
from taskload.jobs.dispatchers.notifier import ReminderMessage, ReminderNotifier
from taskload.jobs.schedulers.reminder_scheduler import ReminderScheduler, SchedulerState
from taskload.jobs.selector import CandidateSelector

__all__ = [
    "CandidateSelector",
    "CycleOutcome",
    "CycleReport",
    "DispatchCycle",
    "DispatchEvent",
    "metrics_observer",
    "ReminderMessage",
    "ReminderNotifier",
    "ReminderScheduler",
    "SchedulerState",
]
