"""Outbound channel integrations behind the IChannel protocol."""

from __future__ import annotations

from sentinel.core.config import AppSettings
from sentinel.core.protocols import IChannel
from sentinel.channels.telegram import TelegramChannel
from sentinel.channels.whatsapp import WhatsAppChannel


def create_channels(settings: AppSettings | None = None) -> dict[str, IChannel]:
    """Build the enabled channel integrations keyed by channel name."""
    if settings is None:
        settings = AppSettings()

    channels: dict[str, IChannel] = {}
    if settings.telegram.enabled:
        channels[TelegramChannel.name] = TelegramChannel(
            bot_token=settings.telegram.bot_token,
            api_base_url=settings.telegram.api_base_url,
            timeout=settings.telegram.timeout,
        )
    if settings.whatsapp.enabled:
        channels[WhatsAppChannel.name] = WhatsAppChannel(
            api_base_url=settings.whatsapp.api_base_url,
            api_key=settings.whatsapp.api_key,
            instance_name=settings.whatsapp.instance_name,
            country_code=settings.whatsapp.default_country_code,
            timeout=settings.whatsapp.timeout,
        )
    return channels
