"""Notification models: contacts, payloads, log entries and channel outcomes."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Channel(StrEnum):
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class Priority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


HR_ROLE = "hr_admin"


class Contact(BaseModel):
    """A person the engine can notify."""

    id: str
    tenant_id: str
    name: str = ""
    role: str = "employee"
    is_active: bool = True
    is_primary_hr: bool = False
    phone: Optional[str] = None
    telegram_id: Optional[str] = None
    email: Optional[str] = None
    allow_whatsapp: bool = True
    allow_telegram: bool = True

    def address_for(self, channel: str) -> Optional[str]:
        """Return the usable address for a channel, or None."""
        if not self.is_active:
            return None
        if channel == Channel.TELEGRAM:
            return self.telegram_id if self.allow_telegram else None
        if channel == Channel.WHATSAPP:
            return self.phone if self.allow_whatsapp else None
        if channel == Channel.EMAIL:
            return self.email
        return None


class NotificationPayload(BaseModel):
    """Rendered message content. `extras` carries provider-specific fields."""

    title: str
    body: str = ""
    priority: Priority = Priority.NORMAL
    action_url: Optional[str] = None
    extras: dict[str, Any] = Field(default_factory=dict)

    def as_text(self) -> str:
        text = f"{self.title}\n\n{self.body}" if self.body else self.title
        if self.action_url:
            text = f"{text}\n\n{self.action_url}"
        return text


class SendResult(BaseModel):
    """Channel collaborator response."""

    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class ChannelOutcome(BaseModel):
    """What happened on one channel during a dispatch."""

    channel: str
    status: NotificationStatus
    provider_message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationLogEntry(BaseModel):
    """One dispatch, unique per (subject, recipient, day bucket).

    ``channel`` lists the channels attempted, comma separated; ``outcomes``
    holds what each of them returned. ``status`` is ``sent`` when any
    channel delivered.
    """

    subject_id: str
    recipient_id: str
    day_bucket: str
    channel: str = ""
    status: NotificationStatus = NotificationStatus.PENDING
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    outcomes: dict[str, ChannelOutcome] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None


class InAppNotification(BaseModel):
    """Inbox message shown to a user inside the application."""

    id: str
    tenant_id: str
    recipient_id: str
    title: str
    message: str = ""
    priority: Priority = Priority.NORMAL
    action_url: Optional[str] = None
    subject_id: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None
