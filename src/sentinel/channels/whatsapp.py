"""WhatsApp messaging-gateway channel."""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from sentinel.core.exceptions import ChannelSendError
from sentinel.models.notification import Channel, SendResult

logger = logging.getLogger(__name__)


def format_whatsapp_number(phone: str, country_code: str = "966") -> str:
    """Normalize a local or international number into a gateway JID."""
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("05"):
        digits = country_code + digits[1:]
    elif digits.startswith("00"):
        digits = digits[2:]
    return f"{digits}@s.whatsapp.net"


class WhatsAppChannel:
    """IChannel that posts to ``/message/sendText/<instance>`` on the gateway."""

    name = Channel.WHATSAPP.value

    def __init__(self, api_base_url: str, api_key: str, instance_name: str,
                 country_code: str = "966", timeout: float = 10.0,
                 client: httpx.AsyncClient | None = None) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._api_key = api_key
        self._instance_name = instance_name
        self._country_code = country_code
        self._timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_base_url and self._api_key and self._instance_name)

    async def send(self, address: str, message: str) -> SendResult:
        if not self.configured:
            return SendResult(success=False, error="WhatsApp gateway not configured")

        url = f"{self._api_base_url}/message/sendText/{self._instance_name}"
        body = {
            "number": format_whatsapp_number(address, self._country_code),
            "textMessage": {"text": message},
        }
        headers = {"apikey": self._api_key}
        try:
            if self._client is not None:
                resp = await self._client.post(url, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(url, json=body, headers=headers)
            data: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ChannelSendError(self.name, str(exc)) from exc

        key = data.get("key") or {}
        if key or data.get("messageId") or data.get("status") == "PENDING":
            message_id = key.get("id") if isinstance(key, dict) else None
            return SendResult(success=True, provider_message_id=message_id or data.get("messageId"))

        error = data.get("message") or f"WhatsApp gateway error (HTTP {resp.status_code})"
        logger.warning("WhatsApp gateway rejected message: %s", error)
        return SendResult(success=False, error=str(error))
