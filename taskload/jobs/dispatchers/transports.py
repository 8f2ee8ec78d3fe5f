"""
描述: 通知通道实现
主要功能:
    - SMTP 邮件通道（纯文本 + HTML 备选正文）
    - HTTP Webhook 通道
    - 日志通道（开发 / 演练）
    - 按配置构建通道
"""

from __future__ import annotations

import asyncio
from email.message import EmailMessage
import logging
import smtplib
from typing import Any, Protocol

import httpx

from taskload.config import EmailSettings, TransportSettings, WebhookSettings
from taskload.utils.exceptions import ConfigError, TransportError

logger = logging.getLogger(__name__)


class NotificationTransport(Protocol):
    """
    通知通道接口

    方法:
        - send: 发送一条通知，True 表示已被通道接受
    """
    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
    ) -> bool: ...


# region SMTP
class SmtpTransport:
    """SMTP 邮件通道（smtplib 同步调用放入工作线程）。"""

    name = "smtp"

    def __init__(self, settings: EmailSettings) -> None:
        self._settings = settings

    def build_message(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        if settings.use_ssl:
            client: smtplib.SMTP = smtplib.SMTP_SSL(settings.host, settings.port, timeout=settings.timeout_seconds)
        else:
            client = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds)
        with client as server:
            if settings.use_tls and not settings.use_ssl:
                server.starttls()
            if settings.username:
                server.login(settings.username, settings.password)
            server.send_message(message)

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
    ) -> bool:
        message = self.build_message(recipient, subject, body_text, body_html)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(self.name, str(exc)) from exc
        return True
# endregion


# region Webhook
class WebhookTransport:
    """HTTP Webhook 通道，2xx 视为成功。"""

    name = "webhook"

    def __init__(self, settings: WebhookSettings, client: httpx.AsyncClient | None = None) -> None:
        if not settings.url:
            raise ConfigError("webhook transport requires a url", field="transport.webhook.url")
        self._settings = settings
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._settings.timeout_seconds, trust_env=False)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
    ) -> bool:
        headers = {"X-API-Key": self._settings.api_key} if self._settings.api_key else {}
        payload: dict[str, Any] = {
            "to": recipient,
            "subject": subject,
            "text": body_text,
        }
        if body_html:
            payload["html"] = body_html

        try:
            response = await self._get_client().post(self._settings.url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(self.name, str(exc)) from exc

        if not response.is_success:
            logger.warning(
                "webhook rejected notification",
                extra={
                    "event_code": "reminder.transport.webhook_rejected",
                    "status_code": response.status_code,
                },
            )
            return False
        return True
# endregion


class LoggingTransport:
    """只记录日志的通道，总是报告成功。"""

    name = "log"

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: str | None = None,
    ) -> bool:
        self.sent.append({"recipient": recipient, "subject": subject, "body_text": body_text})
        logger.info(
            "notification logged",
            extra={
                "event_code": "reminder.transport.logged",
                "recipient": recipient,
                "subject": subject,
            },
        )
        return True


def build_transport(settings: TransportSettings) -> NotificationTransport:
    if settings.kind == "smtp":
        if not settings.email.sender:
            raise ConfigError("smtp transport requires a sender address", field="transport.email.username")
        return SmtpTransport(settings.email)
    if settings.kind == "webhook":
        return WebhookTransport(settings.webhook)
    return LoggingTransport()
