"""Telegram Bot API channel."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sentinel.core.exceptions import ChannelSendError
from sentinel.models.notification import Channel, SendResult

logger = logging.getLogger(__name__)


class TelegramChannel:
    """IChannel that posts to ``/bot<token>/sendMessage``."""

    name = Channel.TELEGRAM.value

    def __init__(self, bot_token: str, api_base_url: str = "https://api.telegram.org",
                 timeout: float = 10.0, parse_mode: str = "HTML",
                 client: httpx.AsyncClient | None = None) -> None:
        self._bot_token = bot_token
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._parse_mode = parse_mode
        self._client = client

    async def send(self, address: str, message: str) -> SendResult:
        if not self._bot_token:
            return SendResult(success=False, error="Telegram bot token not configured")

        url = f"{self._api_base_url}/bot{self._bot_token}/sendMessage"
        body = {"chat_id": address, "text": message, "parse_mode": self._parse_mode}
        try:
            if self._client is not None:
                resp = await self._client.post(url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(url, json=body)
            data: dict[str, Any] = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ChannelSendError(self.name, str(exc)) from exc

        if not data.get("ok"):
            error = data.get("description") or f"Telegram API error (HTTP {resp.status_code})"
            logger.warning("Telegram rejected message to chat %s: %s", address, error)
            return SendResult(success=False, error=error)

        message_id = data.get("result", {}).get("message_id")
        return SendResult(
            success=True,
            provider_message_id=str(message_id) if message_id is not None else None,
        )
