from __future__ import annotations

from taskload.core.candidates import ALL_KINDS, CandidateKind, ReminderCandidate
from taskload.core.clock import Clock, FixedClock, SystemClock
from taskload.core.window import WindowDecision, evaluate, is_eligible, parse_instant, tomorrow_window

__all__ = [
    "ALL_KINDS",
    "CandidateKind",
    "ReminderCandidate",
    "Clock",
    "FixedClock",
    "SystemClock",
    "WindowDecision",
    "evaluate",
    "is_eligible",
    "parse_instant",
    "tomorrow_window",
]
