"""NotificationDispatcher: deduplicated, failure-isolated channel fan-out."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from sentinel.core.exceptions import SentinelError
from sentinel.core.protocols import IChannel, IDirectory, INotificationLog
from sentinel.models.notification import (
    ChannelOutcome,
    Contact,
    NotificationLogEntry,
    NotificationPayload,
    NotificationStatus,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    """Send one payload to one recipient over several channels.

    Each (subject, recipient, day bucket) is claimed once in the
    notification log before any channel is tried; a claim that already
    exists means the message went out (or was attempted) today and every
    channel is skipped. Channel sends run concurrently, bounded by
    ``max_concurrency``, and a failure on one channel never affects the
    others. Store calls run in worker threads so the event loop stays free.
    """

    def __init__(
        self,
        notification_log: INotificationLog,
        channels: dict[str, IChannel],
        directory: IDirectory | None = None,
        *,
        max_concurrency: int = 4,
        timezone_name: str = "UTC",
        clock: Clock = utcnow,
    ) -> None:
        self._log = notification_log
        self._channels = channels
        self._directory = directory
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tz = ZoneInfo(timezone_name)
        self._clock = clock

    def day_bucket(self, when: datetime | None = None) -> str:
        when = when or self._clock()
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when.astimezone(self._tz).date().isoformat()

    async def dispatch(
        self,
        subject_id: str,
        recipient: Contact,
        channels: Iterable[str],
        payload: NotificationPayload,
    ) -> dict[str, ChannelOutcome]:
        requested = list(dict.fromkeys(channels))
        outcomes: dict[str, ChannelOutcome] = {}
        targets: dict[str, tuple[IChannel, str]] = {}
        for channel in requested:
            integration = self._channels.get(channel)
            address = recipient.address_for(channel) if integration is not None else None
            if integration is None:
                outcomes[channel] = ChannelOutcome(
                    channel=channel, status=NotificationStatus.SKIPPED, error="channel disabled",
                )
            elif not address:
                outcomes[channel] = ChannelOutcome(
                    channel=channel, status=NotificationStatus.SKIPPED, error="no address",
                )
            else:
                targets[channel] = (integration, address)

        if not targets:
            return outcomes

        bucket = self.day_bucket()
        entry = NotificationLogEntry(
            subject_id=subject_id,
            recipient_id=recipient.id,
            day_bucket=bucket,
            channel=",".join(targets),
            status=NotificationStatus.PENDING,
            created_at=self._clock(),
        )
        try:
            claimed = await asyncio.to_thread(self._log.claim, entry)
        except SentinelError as exc:
            logger.error("Notification log claim failed for %s/%s: %s", subject_id, recipient.id, exc)
            outcomes.update({
                c: ChannelOutcome(channel=c, status=NotificationStatus.FAILED, error=str(exc))
                for c in targets
            })
            return {c: outcomes[c] for c in requested}
        if not claimed:
            logger.info("Already notified %s about %s on %s", recipient.id, subject_id, bucket)
            return {
                c: ChannelOutcome(channel=c, status=NotificationStatus.SKIPPED, error="duplicate")
                for c in requested
            }

        sent = await asyncio.gather(*(
            self._send(channel, integration, address, recipient, payload)
            for channel, (integration, address) in targets.items()
        ))
        outcomes.update({o.channel: o for o in sent})

        await self._record(entry, sent)
        return {c: outcomes[c] for c in requested}

    async def dispatch_to(
        self,
        tenant_id: str,
        subject_id: str,
        recipient_id: str,
        channels: Iterable[str],
        payload: NotificationPayload,
    ) -> dict[str, ChannelOutcome]:
        """Look the recipient up in the directory, then dispatch."""
        requested = list(dict.fromkeys(channels))
        contact = None
        if self._directory is not None:
            try:
                contact = await asyncio.to_thread(self._directory.get_contact, tenant_id, recipient_id)
            except SentinelError as exc:
                logger.error("Contact lookup failed for %s: %s", recipient_id, exc)
        if contact is None:
            logger.warning("No contact %s in tenant %s; nothing sent", recipient_id, tenant_id)
            return {
                c: ChannelOutcome(channel=c, status=NotificationStatus.SKIPPED, error="unknown recipient")
                for c in requested
            }
        return await self.dispatch(subject_id, contact, requested, payload)

    async def dispatch_many(
        self,
        tenant_id: str,
        subject_id: str,
        recipient_ids: Iterable[str],
        channels: Iterable[str],
        payload: NotificationPayload,
    ) -> dict[str, dict[str, ChannelOutcome]]:
        recipients = list(dict.fromkeys(recipient_ids))
        requested = list(channels)
        results = await asyncio.gather(*(
            self.dispatch_to(tenant_id, subject_id, rid, requested, payload)
            for rid in recipients
        ))
        return dict(zip(recipients, results))

    async def _send(
        self,
        channel: str,
        integration: IChannel,
        address: str,
        recipient: Contact,
        payload: NotificationPayload,
    ) -> ChannelOutcome:
        try:
            async with self._semaphore:
                result = await integration.send(address, payload.as_text())
        except Exception as exc:
            logger.warning("%s send to %s failed: %s", channel, recipient.id, exc, extra={"channel": channel})
            return ChannelOutcome(channel=channel, status=NotificationStatus.FAILED, error=str(exc))
        if not result.success:
            logger.warning("%s send to %s rejected: %s", channel, recipient.id, result.error)
            return ChannelOutcome(channel=channel, status=NotificationStatus.FAILED, error=result.error)
        return ChannelOutcome(
            channel=channel,
            status=NotificationStatus.SENT,
            provider_message_id=result.provider_message_id,
        )

    async def _record(self, entry: NotificationLogEntry, sent: list[ChannelOutcome]) -> None:
        delivered = [o for o in sent if o.status == NotificationStatus.SENT]
        errors = [f"{o.channel}: {o.error}" for o in sent if o.status == NotificationStatus.FAILED]
        entry = entry.model_copy(update={
            "status": NotificationStatus.SENT if delivered else NotificationStatus.FAILED,
            "outcomes": {o.channel: o for o in sent},
            "provider_message_id": delivered[0].provider_message_id if delivered else None,
            "error": "; ".join(errors) or None,
            "sent_at": self._clock() if delivered else None,
        })
        try:
            await asyncio.to_thread(self._log.record_outcome, entry)
        except SentinelError as exc:
            logger.error(
                "Notification log update failed for %s/%s: %s", entry.subject_id, entry.recipient_id, exc,
            )
