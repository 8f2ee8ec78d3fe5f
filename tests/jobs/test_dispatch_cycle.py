from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any

from prometheus_client import REGISTRY
import pytest

from taskload.core.candidates import CandidateKind, ReminderCandidate
from taskload.core.clock import FixedClock
from taskload.db.store import CandidateQuery, InMemoryReminderStore
from taskload.jobs.cycle import CycleOutcome, DispatchCycle, DispatchEvent, metrics_observer
from taskload.jobs.selector import CandidateSelector
from taskload.utils.exceptions import StoreQueryError, StoreUpdateError


NOW = datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)


def _project(candidate_id: str, deadline: Any, **kwargs: Any) -> ReminderCandidate:
    return ReminderCandidate(
        id=candidate_id,
        title=f"Project {candidate_id}",
        kind=CandidateKind.DEADLINE,
        recipient_address="owner@x",
        deadline_instant=deadline,
        **kwargs,
    )


def _task(candidate_id: str, reminder: Any, **kwargs: Any) -> ReminderCandidate:
    return ReminderCandidate(
        id=candidate_id,
        title=f"Task {candidate_id}",
        kind=CandidateKind.INSTANT,
        recipient_address="owner@x",
        reminder_instant=reminder,
        **kwargs,
    )


def _cycle(
    store: Any,
    notifier: Any,
    clock: FixedClock | None = None,
    observer: Any = None,
    max_concurrency: int = 1,
) -> DispatchCycle:
    return DispatchCycle(
        selector=CandidateSelector(store),
        notifier=notifier,
        store=store,
        clock=clock or FixedClock(NOW),
        max_concurrency=max_concurrency,
        observer=observer,
    )


def test_deadline_tomorrow_is_sent_and_day_after_is_excluded() -> None:
    store = InMemoryReminderStore(
        [
            _project("A", "2025-01-11T00:00:00Z"),
            _project("B", "2025-01-12T00:00:00Z"),
        ]
    )
    notifier = _ScriptedNotifier()

    report = asyncio.run(_cycle(store, notifier).run())

    assert notifier.calls == ["deadline:A"]
    assert report.selected == 2
    assert report.count(CycleOutcome.SENT) == 1
    assert report.count(CycleOutcome.SKIPPED) == 1
    assert store.get(CandidateKind.DEADLINE, "A").sent is True  # type: ignore[union-attr]
    assert store.get(CandidateKind.DEADLINE, "B").sent is False  # type: ignore[union-attr]


def test_transport_failure_leaves_unsent_and_retries_next_cycle() -> None:
    store = InMemoryReminderStore([_task("C", "2025-01-10T07:59:00Z")])
    notifier = _ScriptedNotifier(results={"instant:C": False})
    cycle = _cycle(store, notifier)

    first = asyncio.run(cycle.run())
    assert first.count(CycleOutcome.TRANSPORT_FAILED) == 1
    assert store.get(CandidateKind.INSTANT, "C").sent is False  # type: ignore[union-attr]

    second = asyncio.run(cycle.run())
    assert notifier.calls == ["instant:C", "instant:C"]
    assert second.count(CycleOutcome.TRANSPORT_FAILED) == 1


def test_sent_instant_is_not_notified_again() -> None:
    store = InMemoryReminderStore([_task("D", "2025-01-10T07:59:00Z")])
    notifier = _ScriptedNotifier()
    clock = FixedClock(NOW)
    cycle = _cycle(store, notifier, clock=clock)

    first = asyncio.run(cycle.run())
    clock.advance(minutes=5)
    second = asyncio.run(cycle.run())

    assert notifier.calls == ["instant:D"]
    assert first.count(CycleOutcome.SENT) == 1
    assert second.selected == 0
    assert store.get(CandidateKind.INSTANT, "D").sent is True  # type: ignore[union-attr]


def test_future_instant_becomes_due_once_clock_passes() -> None:
    store = InMemoryReminderStore([_task("E", "2025-01-10T08:03:00Z")])
    notifier = _ScriptedNotifier()
    clock = FixedClock(NOW)
    cycle = _cycle(store, notifier, clock=clock)

    asyncio.run(cycle.run())
    assert notifier.calls == []

    clock.advance(minutes=5)
    asyncio.run(cycle.run())
    clock.advance(minutes=5)
    asyncio.run(cycle.run())

    assert notifier.calls == ["instant:E"]


def test_notifier_exception_counts_as_transport_failure() -> None:
    store = InMemoryReminderStore([_task("C", "2025-01-10T07:59:00Z")])
    notifier = _ScriptedNotifier(results={"instant:C": RuntimeError("boom")})

    report = asyncio.run(_cycle(store, notifier).run())

    assert report.count(CycleOutcome.TRANSPORT_FAILED) == 1
    assert store.get(CandidateKind.INSTANT, "C").sent is False  # type: ignore[union-attr]


def test_malformed_timestamp_is_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    store = InMemoryReminderStore([_project("M", "next tuesday")])
    notifier = _ScriptedNotifier()

    with caplog.at_level(logging.WARNING, logger="taskload.jobs.cycle"):
        report = asyncio.run(_cycle(store, notifier).run())

    assert notifier.calls == []
    assert report.count(CycleOutcome.MALFORMED) == 1
    records = [r for r in caplog.records if getattr(r, "event_code", "") == "reminder.candidate.malformed"]
    assert records and records[0].candidate_key == "deadline:M"


def test_lost_race_reads_as_already_handled(caplog: pytest.LogCaptureFixture) -> None:
    store = _RacingStore([_task("R", "2025-01-10T07:00:00Z")])
    notifier = _ScriptedNotifier()

    with caplog.at_level(logging.INFO, logger="taskload.jobs.cycle"):
        report = asyncio.run(_cycle(store, notifier).run())

    assert report.count(CycleOutcome.ALREADY_HANDLED) == 1
    assert report.count(CycleOutcome.SENT) == 0
    levels = {r.levelno for r in caplog.records if getattr(r, "event_code", "") == "reminder.candidate.already_handled"}
    assert levels == {logging.INFO}


def test_commit_failure_is_logged_as_duplicate_risk(caplog: pytest.LogCaptureFixture) -> None:
    store = _CommitFailingStore([_task("F", "2025-01-10T07:00:00Z")])
    notifier = _ScriptedNotifier()
    events: list[DispatchEvent] = []

    with caplog.at_level(logging.ERROR, logger="taskload.jobs.cycle"):
        report = asyncio.run(_cycle(store, notifier, observer=events.append).run())

    assert notifier.calls == ["instant:F"]
    assert report.count(CycleOutcome.COMMIT_FAILED) == 1
    errors = [r for r in caplog.records if getattr(r, "event_code", "") == "reminder.candidate.commit_failed"]
    assert errors and errors[0].levelno == logging.ERROR
    assert "duplicate" in errors[0].getMessage()
    assert [event.event_code for event in events] == ["reminder.candidate.commit_failed"]


def test_unexpected_commit_error_does_not_abort_cycle(caplog: pytest.LogCaptureFixture) -> None:
    store = _FlakyCommitStore(
        [_task("A", "2025-01-10T07:00:00Z"), _task("B", "2025-01-10T07:00:00Z")],
        failing_key="instant:A",
    )
    notifier = _ScriptedNotifier()

    with caplog.at_level(logging.ERROR, logger="taskload.jobs.cycle"):
        report = asyncio.run(_cycle(store, notifier).run())

    assert notifier.calls == ["instant:A", "instant:B"]
    assert report.count(CycleOutcome.COMMIT_FAILED) == 1
    assert report.count(CycleOutcome.SENT) == 1
    assert store.get(CandidateKind.INSTANT, "B").sent is True  # type: ignore[union-attr]
    errors = [r for r in caplog.records if getattr(r, "event_code", "") == "reminder.candidate.commit_failed"]
    assert [r.candidate_key for r in errors] == ["instant:A"]
    assert errors[0].levelno == logging.ERROR


def test_unexpected_commit_error_with_concurrency_keeps_siblings() -> None:
    store = _FlakyCommitStore(
        [_task(f"T{i}", "2025-01-10T07:00:00Z") for i in range(4)],
        failing_key="instant:T1",
    )
    notifier = _ScriptedNotifier(delay=0.01)

    report = asyncio.run(_cycle(store, notifier, max_concurrency=2).run())

    assert report.count(CycleOutcome.COMMIT_FAILED) == 1
    assert report.count(CycleOutcome.SENT) == 3


def test_store_query_failure_aborts_cycle_without_side_effects() -> None:
    notifier = _ScriptedNotifier()
    store = _QueryFailingStore()
    events: list[DispatchEvent] = []

    report = asyncio.run(_cycle(store, notifier, observer=events.append).run())

    assert report.aborted is True
    assert report.selected == 0
    assert "connection refused" in report.error
    assert notifier.calls == []
    assert store.update_calls == 0
    assert [event.event_code for event in events] == ["reminder.cycle.aborted"]


def test_duplicate_rows_are_processed_once_per_cycle() -> None:
    candidate = _task("G", "2025-01-10T07:00:00Z")
    store = _DuplicatingStore([candidate])
    notifier = _ScriptedNotifier()

    report = asyncio.run(_cycle(store, notifier).run())

    assert notifier.calls == ["instant:G"]
    assert report.selected == 1


def test_same_id_across_kinds_are_distinct_candidates() -> None:
    store = InMemoryReminderStore([_project("1", "2025-01-11"), _task("1", "2025-01-10T07:00:00Z")])
    notifier = _ScriptedNotifier()

    report = asyncio.run(_cycle(store, notifier).run())

    assert sorted(notifier.calls) == ["deadline:1", "instant:1"]
    assert report.count(CycleOutcome.SENT) == 2


def test_cycle_uses_single_now_for_all_candidates() -> None:
    last_second = datetime(2025, 1, 10, 23, 59, 59, tzinfo=timezone.utc)
    store = InMemoryReminderStore([_project(f"P{i}", "2025-01-11") for i in range(3)])
    clock = _TickingClock(last_second)
    notifier = _ScriptedNotifier()

    report = asyncio.run(_cycle(store, notifier, clock=clock).run())

    assert report.count(CycleOutcome.SENT) == 3
    assert report.started_at == last_second


def test_bounded_concurrency_aggregates_after_gather() -> None:
    store = InMemoryReminderStore([_task(f"T{i}", "2025-01-10T07:00:00Z") for i in range(6)])
    notifier = _ScriptedNotifier(delay=0.01, results={"instant:T3": False})

    report = asyncio.run(_cycle(store, notifier, max_concurrency=3).run())

    assert notifier.max_in_flight <= 3
    assert notifier.max_in_flight > 1
    assert report.count(CycleOutcome.SENT) == 5
    assert report.count(CycleOutcome.TRANSPORT_FAILED) == 1


def test_observer_failure_does_not_break_cycle(caplog: pytest.LogCaptureFixture) -> None:
    store = InMemoryReminderStore([_task("H", "2025-01-10T07:00:00Z")])

    def observer(event: DispatchEvent) -> None:
        raise RuntimeError("observer down")

    with caplog.at_level(logging.WARNING, logger="taskload.jobs.cycle"):
        report = asyncio.run(_cycle(store, _ScriptedNotifier(), observer=observer).run())

    assert report.count(CycleOutcome.SENT) == 1
    assert any(getattr(r, "event_code", "") == "reminder.observer.failed" for r in caplog.records)


def test_metrics_observer_counts_candidate_outcomes() -> None:
    labels = {"kind": "instant", "outcome": "sent"}
    before = REGISTRY.get_sample_value("reminder_candidates_total", labels) or 0.0

    metrics_observer(DispatchEvent(event_code="reminder.candidate.sent", candidate_key="instant:1", kind="instant"))
    metrics_observer(DispatchEvent(event_code="reminder.cycle.aborted"))

    after = REGISTRY.get_sample_value("reminder_candidates_total", labels)
    assert after == before + 1


def test_report_to_dict_is_json_friendly() -> None:
    store = InMemoryReminderStore([_task("J", "2025-01-10T07:00:00Z")])

    payload = asyncio.run(_cycle(store, _ScriptedNotifier()).run()).to_dict()

    assert payload["counts"]["sent"] == 1
    assert payload["aborted"] is False
    assert payload["started_at"] == "2025-01-10T08:00:00+00:00"


def test_rejects_invalid_concurrency() -> None:
    with pytest.raises(ValueError):
        _cycle(InMemoryReminderStore(), _ScriptedNotifier(), max_concurrency=0)


class _ScriptedNotifier:
    def __init__(self, results: dict[str, Any] | None = None, delay: float = 0.0) -> None:
        self._results = results or {}
        self._delay = delay
        self._in_flight = 0
        self.max_in_flight = 0
        self.calls: list[str] = []

    async def send(self, candidate: ReminderCandidate) -> bool:
        self.calls.append(candidate.key)
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self._delay:
                await asyncio.sleep(self._delay)
            result = self._results.get(candidate.key, True)
            if isinstance(result, Exception):
                raise result
            return bool(result)
        finally:
            self._in_flight -= 1


class _RacingStore(InMemoryReminderStore):
    async def conditional_update(self, *args: Any) -> bool:
        return False


class _CommitFailingStore(InMemoryReminderStore):
    async def conditional_update(self, kind: CandidateKind, candidate_id: str, *args: Any) -> bool:
        raise StoreUpdateError(f"{kind.value}:{candidate_id}", "connection lost")


class _FlakyCommitStore(InMemoryReminderStore):
    def __init__(self, candidates: list[ReminderCandidate], failing_key: str) -> None:
        super().__init__(candidates)
        self._failing_key = failing_key

    async def conditional_update(self, kind: CandidateKind, candidate_id: str, *args: Any) -> bool:
        if f"{kind.value}:{candidate_id}" == self._failing_key:
            raise ConnectionResetError("connection was closed in the middle of operation")
        return await super().conditional_update(kind, candidate_id, *args)


class _QueryFailingStore:
    def __init__(self) -> None:
        self.update_calls = 0

    async def query(self, predicate: CandidateQuery) -> list[ReminderCandidate]:
        raise StoreQueryError("connection refused")

    async def conditional_update(self, *args: Any) -> bool:
        self.update_calls += 1
        return False


class _DuplicatingStore(InMemoryReminderStore):
    async def query(self, predicate: CandidateQuery) -> list[ReminderCandidate]:
        rows = await super().query(predicate)
        return rows + rows


class _TickingClock(FixedClock):
    def now(self) -> datetime:
        current = super().now()
        self.advance(seconds=1)
        return current
