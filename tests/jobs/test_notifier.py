from __future__ import annotations

import asyncio
from typing import Any

from taskload.core.candidates import CandidateKind, ReminderCandidate
from taskload.jobs.dispatchers.notifier import ReminderNotifier
from taskload.utils.exceptions import TransportError


def _project(title: str = "Report") -> ReminderCandidate:
    return ReminderCandidate(
        id="p1",
        title=title,
        kind=CandidateKind.DEADLINE,
        recipient_address="a@x",
        deadline_instant="2025-01-11",
    )


def _task(**kwargs: Any) -> ReminderCandidate:
    return ReminderCandidate(
        id="t1",
        title="Call",
        kind=CandidateKind.INSTANT,
        recipient_address="b@x",
        reminder_instant="2025-01-10T07:00:00Z",
        **kwargs,
    )


def test_deadline_message_text() -> None:
    message = ReminderNotifier(_RecordingTransport()).build_message(_project())

    assert message.subject == 'Reminder: Project "Report" deadline is tomorrow!'
    assert message.body_text == 'Hey there! Don\'t forget, your project "Report" is due tomorrow (2025-01-11).'
    assert "2025-01-11" in message.body_html


def test_instant_message_mentions_deadline_when_known() -> None:
    notifier = ReminderNotifier(_RecordingTransport())

    plain = notifier.build_message(_task())
    with_deadline = notifier.build_message(_task(deadline_instant="2025-01-20T17:00:00Z"))

    assert plain.subject == 'Reminder: Task "Call"'
    assert "due on" not in plain.body_text
    assert with_deadline.body_text.endswith("It is due on 2025-01-20.")


def test_html_body_escapes_title() -> None:
    message = ReminderNotifier(_RecordingTransport()).build_message(_project("<b>Q1</b> & more"))

    assert "<b>Q1</b>" not in message.body_html
    assert "&lt;b&gt;Q1&lt;/b&gt; &amp; more" in message.body_html


def test_send_passes_message_to_transport() -> None:
    transport = _RecordingTransport()

    delivered = asyncio.run(ReminderNotifier(transport).send(_project()))

    assert delivered is True
    assert transport.calls == [
        {
            "recipient": "a@x",
            "subject": 'Reminder: Project "Report" deadline is tomorrow!',
            "body_text": 'Hey there! Don\'t forget, your project "Report" is due tomorrow (2025-01-11).',
        }
    ]


def test_send_returns_false_when_transport_rejects() -> None:
    assert asyncio.run(ReminderNotifier(_RecordingTransport(result=False)).send(_task())) is False


def test_send_maps_transport_exception_to_false() -> None:
    transport = _RecordingTransport(error=TransportError("smtp", "auth failed"))

    assert asyncio.run(ReminderNotifier(transport).send(_task())) is False


def test_send_maps_timeout_to_false() -> None:
    transport = _RecordingTransport(delay=1.0)

    assert asyncio.run(ReminderNotifier(transport, timeout_seconds=0.01).send(_task())) is False


def test_send_without_recipient_does_not_call_transport() -> None:
    transport = _RecordingTransport()
    candidate = _task()
    candidate.recipient_address = "  "

    assert asyncio.run(ReminderNotifier(transport).send(candidate)) is False
    assert transport.calls == []


class _RecordingTransport:
    def __init__(self, result: bool = True, error: Exception | None = None, delay: float = 0.0) -> None:
        self._result = result
        self._error = error
        self._delay = delay
        self.calls: list[dict[str, Any]] = []

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
    ) -> bool:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        self.calls.append({"recipient": recipient, "subject": subject, "body_text": body_text})
        return self._result
