"""
Floor Monitor — Notification Channel Senders.

One sender per delivery channel. Every sender returns a SendResult and
never raises; an unconfigured channel reports failure (email, WhatsApp) or
logs the message locally (SMS, push).
"""

from __future__ import annotations

import asyncio
import smtplib
import time
from email.message import EmailMessage
from typing import Optional, Protocol

import httpx

from config import NotificationSettings
from logger import get_logger, log_external_call
from schemas.notification import Channel, Priority, SendResult, UserContact

logger = get_logger(__name__)


class ChannelSender(Protocol):
    async def send(self, recipient: UserContact, title: str, body: str, priority: Priority) -> SendResult: ...


class EmailSender:
    def __init__(self, settings: NotificationSettings) -> None:
        self._settings = settings

    def _send_sync(self, to_addr: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self._settings.smtp_sender
        msg["To"] = to_addr
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port,
                          timeout=self._settings.send_timeout_seconds) as smtp:
            smtp.starttls()
            if self._settings.smtp_user and self._settings.smtp_password:
                smtp.login(self._settings.smtp_user, self._settings.smtp_password.get_secret_value())
            smtp.send_message(msg)

    async def send(self, recipient: UserContact, title: str, body: str, priority: Priority) -> SendResult:
        if not recipient.email:
            return SendResult(success=False, error="recipient has no email")
        if not self._settings.smtp_host:
            return SendResult(success=False, error="SMTP not configured")
        subject = f"[{priority.value}] {title}"
        try:
            await asyncio.to_thread(self._send_sync, recipient.email, subject, body)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email send failed: %s", e, user_id=recipient.id)
            return SendResult(success=False, error=str(e))
        logger.info("Email sent", user_id=recipient.id, priority=priority.value)
        return SendResult(success=True)


async def _post_json(
    service: str,
    url: str,
    payload: dict,
    timeout: float,
    headers: Optional[dict] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> SendResult:
    start = time.perf_counter()
    try:
        if client is not None:
            r = await client.post(url, json=payload, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as c:
                r = await c.post(url, json=payload, headers=headers)
        r.raise_for_status()
    except httpx.HTTPError as e:
        log_external_call(service, "POST", url, error=str(e),
                          duration_ms=round((time.perf_counter() - start) * 1000, 2))
        return SendResult(success=False, error=str(e))
    log_external_call(service, "POST", url, status_code=r.status_code,
                      duration_ms=round((time.perf_counter() - start) * 1000, 2))
    return SendResult(success=True)


class WhatsAppSender:
    """WhatsApp Business Cloud API text message."""

    def __init__(self, settings: NotificationSettings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client

    async def send(self, recipient: UserContact, title: str, body: str, priority: Priority) -> SendResult:
        if not recipient.phone:
            return SendResult(success=False, error="recipient has no phone")
        if not self._settings.whatsapp_token or not self._settings.whatsapp_phone_id:
            return SendResult(success=False, error="WhatsApp not configured")
        url = f"{self._settings.whatsapp_api_url.rstrip('/')}/{self._settings.whatsapp_phone_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": recipient.phone,
            "type": "text",
            "text": {"body": f"*{title}*\n{body}"},
        }
        headers = {"Authorization": f"Bearer {self._settings.whatsapp_token.get_secret_value()}"}
        return await _post_json("whatsapp", url, payload, self._settings.send_timeout_seconds,
                                headers=headers, client=self._client)


class SmsSender:
    """SMS through a gateway webhook; without one the message is only logged."""

    def __init__(self, settings: NotificationSettings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client

    async def send(self, recipient: UserContact, title: str, body: str, priority: Priority) -> SendResult:
        if not recipient.phone:
            return SendResult(success=False, error="recipient has no phone")
        if not self._settings.sms_webhook_url:
            logger.info("SMS logged (no gateway configured)", user_id=recipient.id,
                        phone=recipient.phone, title=title)
            return SendResult(success=True)
        payload = {"to": recipient.phone, "message": f"{title}: {body}", "priority": priority.value}
        return await _post_json("sms-gateway", self._settings.sms_webhook_url, payload,
                                self._settings.send_timeout_seconds, client=self._client)


class PushSender:
    """In-app push. Posts to the push webhook when configured."""

    def __init__(self, settings: NotificationSettings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client

    async def send(self, recipient: UserContact, title: str, body: str, priority: Priority) -> SendResult:
        if not self._settings.push_webhook_url:
            logger.info("Push notification logged", user_id=recipient.id, title=title)
            return SendResult(success=True)
        payload = {"user_id": recipient.id, "title": title, "body": body, "priority": priority.value}
        return await _post_json("push", self._settings.push_webhook_url, payload,
                                self._settings.send_timeout_seconds, client=self._client)


def build_senders(
    settings: NotificationSettings, client: Optional[httpx.AsyncClient] = None
) -> dict[Channel, ChannelSender]:
    return {
        Channel.EMAIL: EmailSender(settings),
        Channel.SMS: SmsSender(settings, client),
        Channel.WHATSAPP: WhatsAppSender(settings, client),
        Channel.PUSH: PushSender(settings, client),
    }
