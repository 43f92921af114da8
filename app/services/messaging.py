from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from app.core.config import settings
from app.services.whatsapp_client import WhatsAppClient, WhatsAppConfig, WhatsAppError


@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class MessagingGateway:
    """Fire-once outbound channel: one attempt, bounded by the client timeout, result returned not raised."""

    def send_interactive(self, to: str, interactive: dict) -> SendResult:
        raise NotImplementedError

    def send_text(self, to: str, body: str) -> SendResult:
        raise NotImplementedError


class WhatsAppGateway(MessagingGateway):
    def __init__(self, client: WhatsAppClient) -> None:
        self._client = client
        self._logger = logging.getLogger(__name__)

    def send_interactive(self, to: str, interactive: dict) -> SendResult:
        try:
            return SendResult(success=True, message_id=self._client.send_interactive(to=to, interactive=interactive))
        except WhatsAppError as e:
            self._logger.warning("WhatsApp interactive send failed", extra={"reason": str(e)})
            return SendResult(success=False, error=str(e))

    def send_text(self, to: str, body: str) -> SendResult:
        try:
            return SendResult(success=True, message_id=self._client.send_text(to=to, body=body))
        except WhatsAppError as e:
            self._logger.warning("WhatsApp text send failed", extra={"reason": str(e)})
            return SendResult(success=False, error=str(e))


class MockMessagingGateway(MessagingGateway):
    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    def _fake_id(self) -> str:
        return f"mock-{uuid.uuid4().hex[:12]}"

    def send_interactive(self, to: str, interactive: dict) -> SendResult:
        self._logger.info("Mock WhatsApp interactive send", extra={"reason": f"to={to}"})
        return SendResult(success=True, message_id=self._fake_id())

    def send_text(self, to: str, body: str) -> SendResult:
        self._logger.info("Mock WhatsApp text send", extra={"reason": f"to={to}"})
        return SendResult(success=True, message_id=self._fake_id())


def get_messaging_gateway() -> MessagingGateway:
    if not (settings.WHATSAPP_PHONE_NUMBER_ID and settings.WHATSAPP_ACCESS_TOKEN):
        if settings.ENV.lower() in {"dev", "local", "test"}:
            return MockMessagingGateway()
        raise ValueError("WHATSAPP_PHONE_NUMBER_ID and WHATSAPP_ACCESS_TOKEN are required to send WhatsApp messages.")
    return WhatsAppGateway(WhatsAppClient(WhatsAppConfig(
        phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
        access_token=settings.WHATSAPP_ACCESS_TOKEN,
        graph_version=settings.WHATSAPP_GRAPH_VERSION,
        timeout=settings.WHATSAPP_TIMEOUT_SECONDS,
    )))
