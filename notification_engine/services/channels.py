"""Channel transports.

Every channel exposes the same ``send(endpoint, message) -> external_id``
capability, so retry and backoff logic never branches on the channel.
"""
import logging
import smtplib
import socket
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Dict, Optional

import httpx

from notification_engine.core.config import Settings, get_settings
from notification_engine.core.errors import TransportError
from notification_engine.models.enums import DeliveryChannel
from notification_engine.services.rendering import RenderedContent

logger = logging.getLogger(__name__)


class ChannelSender(ABC):
    channel: DeliveryChannel

    @abstractmethod
    def send(self, endpoint: str, message: RenderedContent) -> str:
        """Hand the message to the transport and return its external id.

        Raises TransportError with an opaque reason on rejection.
        """


class EmailSender(ChannelSender):
    channel = DeliveryChannel.EMAIL

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _connect(self) -> smtplib.SMTP:
        settings = self.settings
        timeout = settings.transport_timeout_sec
        if settings.smtp_port == 465:
            smtp = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=timeout)
        else:
            smtp = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=timeout)
            if settings.smtp_use_tls:
                smtp.starttls()
        if settings.smtp_username:
            smtp.login(settings.smtp_username, settings.smtp_password)
        return smtp

    def send(self, endpoint: str, message: RenderedContent) -> str:
        msg = EmailMessage()
        msg["From"] = self.settings.smtp_from
        msg["To"] = endpoint
        msg["Subject"] = message.subject or ""
        msg["Message-ID"] = make_msgid()
        msg.set_content(message.body)
        try:
            smtp = self._connect()
            try:
                smtp.send_message(msg)
            finally:
                smtp.quit()
        except (socket.timeout, TimeoutError) as exc:
            raise TransportError("SMTP_TIMEOUT") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise TransportError(f"SMTP_RECIPIENT_REFUSED: {endpoint}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise TransportError(f"SMTP_ERROR: {exc}") from exc
        return msg["Message-ID"]


class WebhookSender(ChannelSender):
    """Posts the message to a provider webhook; used for push and in-app."""

    url_setting: str = ""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self.url = getattr(self.settings, self.url_setting)
        self._client = client or httpx.Client(timeout=self.settings.transport_timeout_sec)

    def send(self, endpoint: str, message: RenderedContent) -> str:
        if not self.url:
            raise TransportError(f"{self.channel.value}_NOT_CONFIGURED")
        body = {
            "channel": self.channel.value,
            "recipient": endpoint,
            "title": message.subject,
            "message": message.body,
        }
        try:
            resp = self._client.post(self.url, json=body)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise TransportError(f"{self.channel.value}_TIMEOUT") from exc
        except httpx.HTTPStatusError as exc:
            raise TransportError(f"HTTP_{exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{self.channel.value}_ERROR: {exc}") from exc
        data = resp.json() if resp.content else {}
        external_id = data.get("id") or data.get("externalId")
        if not external_id:
            raise TransportError(f"{self.channel.value}_NO_EXTERNAL_ID")
        return str(external_id)


class PushSender(WebhookSender):
    channel = DeliveryChannel.PUSH
    url_setting = "push_webhook_url"


class InAppSender(WebhookSender):
    channel = DeliveryChannel.IN_APP
    url_setting = "in_app_webhook_url"


_senders: Optional[Dict[DeliveryChannel, ChannelSender]] = None


def get_senders() -> Dict[DeliveryChannel, ChannelSender]:
    global _senders
    if _senders is None:
        _senders = {sender.channel: sender for sender in (EmailSender(), PushSender(), InAppSender())}
    return _senders


def set_senders(senders: Optional[Dict[DeliveryChannel, ChannelSender]]) -> None:
    global _senders
    _senders = senders
