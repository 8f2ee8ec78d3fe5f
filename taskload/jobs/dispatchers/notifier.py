"""
描述: 提醒通知器
主要功能:
    - 按候选类型生成邮件标题 / 纯文本 / HTML 正文
    - 调用通知通道发送，超时与异常统一映射为 False
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timezone, tzinfo
import html
import logging

from taskload.core.candidates import CandidateKind, ReminderCandidate
from taskload.core.window import parse_instant
from taskload.jobs.dispatchers.transports import NotificationTransport
from taskload.utils.exceptions import MalformedTimestampError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderMessage:
    """
    提醒消息

    属性:
        - subject: 标题
        - body_text: 纯文本正文
        - body_html: HTML 备选正文
    """
    subject: str
    body_text: str
    body_html: str


class ReminderNotifier:
    """
    提醒通知器

    功能:
        - 构建提醒消息
        - 发送并返回布尔结果（不做重试，失败留给下一轮）
    """
    def __init__(
        self,
        transport: NotificationTransport,
        timeout_seconds: float = 30.0,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._transport = transport
        self._timeout_seconds = float(timeout_seconds)
        self._tz = tz

    def build_message(self, candidate: ReminderCandidate) -> ReminderMessage:
        title = candidate.title
        safe_title = html.escape(title)

        if candidate.kind is CandidateKind.DEADLINE:
            due = self._format_date(candidate.deadline_instant) or "tomorrow"
            subject = f'Reminder: Project "{title}" deadline is tomorrow!'
            body_text = f'Hey there! Don\'t forget, your project "{title}" is due tomorrow ({due}).'
            body_html = (
                f"<p>Hey there!</p>"
                f"<p>Don't forget, your project <strong>&quot;{safe_title}&quot;</strong> "
                f"is due tomorrow ({html.escape(due)}).</p>"
            )
            return ReminderMessage(subject=subject, body_text=body_text, body_html=body_html)

        subject = f'Reminder: Task "{title}"'
        body_text = f'Hey there! This is your reminder for the task "{title}".'
        body_html = f"<p>Hey there!</p><p>This is your reminder for the task <strong>&quot;{safe_title}&quot;</strong>.</p>"
        due = self._format_date(candidate.deadline_instant)
        if due:
            body_text += f" It is due on {due}."
            body_html += f"<p>It is due on {html.escape(due)}.</p>"
        return ReminderMessage(subject=subject, body_text=body_text, body_html=body_html)

    async def send(self, candidate: ReminderCandidate) -> bool:
        recipient = str(candidate.recipient_address or "").strip()
        if not recipient:
            return False

        message = self.build_message(candidate)
        try:
            accepted = await asyncio.wait_for(
                self._transport.send(recipient, message.subject, message.body_text, message.body_html),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "notification send timed out",
                extra={
                    "event_code": "reminder.notifier.timeout",
                    "candidate_key": candidate.key,
                    "timeout_seconds": self._timeout_seconds,
                },
            )
            return False
        except Exception:
            logger.warning(
                "notification send failed",
                extra={
                    "event_code": "reminder.notifier.failed",
                    "candidate_key": candidate.key,
                },
                exc_info=True,
            )
            return False
        return bool(accepted)

    def _format_date(self, value: object) -> str:
        try:
            return parse_instant(value, self._tz).astimezone(self._tz).date().isoformat()  # type: ignore[arg-type]
        except MalformedTimestampError:
            return ""
