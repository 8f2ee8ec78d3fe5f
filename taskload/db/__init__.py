from __future__ import annotations

from taskload.db.store import CandidateQuery, InMemoryReminderStore, ReminderStore, SENT_FIELD

__all__ = ["CandidateQuery", "InMemoryReminderStore", "ReminderStore", "SENT_FIELD"]
