from __future__ import annotations

from taskload.jobs.schedulers.reminder_scheduler import ReminderScheduler, SchedulerState

__all__ = ["ReminderScheduler", "SchedulerState"]
