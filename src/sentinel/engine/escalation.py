"""EscalationEngine: deadline-driven hand-off of unacknowledged items.

A chain is a sequence of EscalationRecords for one (tenant, item, original
recipient), one record per level. The sweep claims each overdue pending
record with a conditional status write before creating its successor, so
overlapping sweeps cannot both advance the same record. That conditional
write is the only concurrency control; there is no lock table.

A claimed record carries ``handoff = "open"`` until its successor exists
and has been notified. A process that dies in between leaves the marker
behind, and a later sweep finishes the hand-off.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta
from enum import StrEnum

from sentinel.core.exceptions import (
    InvalidTransitionError,
    NoRecipientError,
    NotFoundError,
    SentinelError,
)
from sentinel.core.protocols import IDirectory, IEscalationStore, IItemStore, INotificationInbox
from sentinel.engine.dispatcher import Clock, NotificationDispatcher, utcnow
from sentinel.engine.resolver import RecipientResolver
from sentinel.engine.templates import DEFAULT_ESCALATION_TEMPLATE, render_template
from sentinel.models.escalation import (
    HANDOFF_OPEN,
    EscalationRecord,
    EscalationRule,
    EscalationStatus,
    RunStatus,
    RunSummary,
    level_name,
)
from sentinel.models.notification import (
    ChannelOutcome,
    InAppNotification,
    NotificationPayload,
    NotificationStatus,
    Priority,
)

logger = logging.getLogger(__name__)


class RecordOutcome(StrEnum):
    ESCALATED = "escalated"
    EXPIRED = "expired"
    SKIPPED = "skipped"


class EscalationEngine:
    """Open, advance, acknowledge and resolve escalation chains.

    Store reads and writes are blocking calls; the async entry points run
    them in worker threads.
    """

    def __init__(
        self,
        escalations: IEscalationStore,
        resolver: RecipientResolver,
        dispatcher: NotificationDispatcher,
        *,
        directory: IDirectory | None = None,
        items: IItemStore | None = None,
        inbox: INotificationInbox | None = None,
        max_level: int = 4,
        batch_size: int = 100,
        default_delay_hours: int = 24,
        default_channels: list[str] | None = None,
        handoff_grace_minutes: int = 15,
        job_type: str = "process_escalations",
        app_base_url: str = "",
        clock: Clock = utcnow,
    ) -> None:
        self._escalations = escalations
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._directory = directory
        self._items = items
        self._inbox = inbox
        self._max_level = max_level
        self._batch_size = batch_size
        self._default_delay_hours = default_delay_hours
        self._default_channels = default_channels or ["telegram", "whatsapp"]
        self._handoff_grace = timedelta(minutes=handoff_grace_minutes)
        self._job_type = job_type
        self._app_base_url = app_base_url.rstrip("/")
        self._clock = clock

    @property
    def max_level(self) -> int:
        return self._max_level

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self, now: datetime | None = None) -> RunSummary:
        """Advance every overdue pending record, oldest due first.

        Records are processed one at a time; a failure on one record is
        counted and logged and the sweep moves on. Only a failure to read
        the due list aborts the run. Hand-offs left open by an earlier
        crash are finished afterwards.
        """
        started = now or self._clock()
        t0 = time.monotonic()
        summary = RunSummary(job_type=self._job_type, started_at=started)

        due = await asyncio.to_thread(self._escalations.list_due, started, self._batch_size)
        logger.info("Escalation sweep: %d overdue record(s)", len(due))

        for record in due:
            summary.processed += 1
            try:
                outcome = await self._process(record, started)
            except Exception:
                summary.errors += 1
                logger.exception("Failed to process escalation %s", record.id)
                continue
            if outcome == RecordOutcome.ESCALATED:
                summary.escalated += 1
            elif outcome == RecordOutcome.EXPIRED:
                summary.expired += 1
            else:
                summary.skipped += 1

        await self._recover_open_handoffs(summary, started)

        summary.completed_at = self._clock()
        summary.duration_ms = int((time.monotonic() - t0) * 1000)
        summary.status = RunStatus.PARTIAL if summary.errors else RunStatus.SUCCESS

        try:
            await asyncio.to_thread(self._escalations.save_run, summary)
        except SentinelError as exc:
            logger.error("Could not record escalation run: %s", exc)

        logger.info(
            "Escalation sweep done: processed=%d escalated=%d expired=%d skipped=%d "
            "recovered=%d errors=%d (%dms)",
            summary.processed, summary.escalated, summary.expired,
            summary.skipped, summary.recovered, summary.errors, summary.duration_ms,
            extra={"duration_ms": summary.duration_ms},
        )
        return summary

    async def _process(self, record: EscalationRecord, now: datetime) -> RecordOutcome:
        next_level = record.level + 1
        if next_level > self._max_level:
            return await self._expire(
                record, EscalationStatus.PENDING,
                f"no recipient beyond maximum level {self._max_level}",
            )

        try:
            recipient_id = await asyncio.to_thread(
                self._resolve, record.tenant_id, record.original_recipient_id, next_level,
            )
        except NoRecipientError:
            return await self._expire(record, EscalationStatus.PENDING, f"no recipient at level {next_level}")

        rule = await asyncio.to_thread(self.rule_for, record.tenant_id, next_level)

        claimed = await asyncio.to_thread(
            self._escalations.update_record_status,
            record.id,
            EscalationStatus.PENDING,
            EscalationStatus.ESCALATED,
            escalated_at=now,
            reason=f"not acknowledged at level {record.level}",
            handoff=HANDOFF_OPEN,
        )
        if not claimed:
            logger.info("Escalation %s already claimed by another sweep", record.id)
            return RecordOutcome.SKIPPED

        return await self._hand_off(record, recipient_id, rule, now)

    async def _hand_off(
        self, record: EscalationRecord, recipient_id: str, rule: EscalationRule, now: datetime,
    ) -> RecordOutcome:
        """Insert the claimed record's successor, notify it, close the hand-off."""
        next_level = record.level + 1
        successor = EscalationRecord(
            id=EscalationRecord.make_id(
                record.tenant_id, record.item_id, record.original_recipient_id, next_level,
            ),
            tenant_id=record.tenant_id,
            item_id=record.item_id,
            original_recipient_id=record.original_recipient_id,
            level=next_level,
            current_recipient_id=recipient_id,
            previous_recipient_id=record.current_recipient_id,
            status=EscalationStatus.PENDING,
            sent_at=now,
            next_escalation_at=now + timedelta(hours=rule.delay_hours),
        )
        try:
            inserted = await asyncio.to_thread(self._escalations.insert_record, successor)
        except SentinelError:
            await self._release_claim(record)
            raise

        if inserted:
            logger.info(
                "Escalated item %s to level %d (%s): %s",
                record.item_id, next_level, level_name(next_level), recipient_id,
                extra={"tenant_id": record.tenant_id, "item_id": record.item_id, "escalation_id": successor.id},
            )
            await self._notify(successor, rule)
        else:
            logger.warning("Successor %s already exists; not notifying again", successor.id)

        await self._close_handoff(record)
        return RecordOutcome.ESCALATED if inserted else RecordOutcome.SKIPPED

    async def _recover_open_handoffs(self, summary: RunSummary, now: datetime) -> None:
        try:
            stuck = await asyncio.to_thread(
                self._escalations.list_open_handoffs, now - self._handoff_grace, self._batch_size,
            )
        except SentinelError as exc:
            summary.errors += 1
            logger.error("Could not list open hand-offs: %s", exc)
            return

        for record in stuck:
            try:
                outcome = await self._recover(record, now)
            except Exception:
                summary.errors += 1
                logger.exception("Failed to finish hand-off for escalation %s", record.id)
                continue
            if outcome == RecordOutcome.ESCALATED:
                summary.recovered += 1
            elif outcome == RecordOutcome.EXPIRED:
                summary.expired += 1
            else:
                summary.skipped += 1

    async def _recover(self, record: EscalationRecord, now: datetime) -> RecordOutcome:
        """Finish a hand-off whose sweep died after claiming the record."""
        next_level = record.level + 1
        logger.warning(
            "Escalation %s was claimed at %s without finishing its hand-off", record.id, record.escalated_at,
            extra={"tenant_id": record.tenant_id, "item_id": record.item_id, "escalation_id": record.id},
        )
        rule = await asyncio.to_thread(self.rule_for, record.tenant_id, next_level)
        successor = await asyncio.to_thread(
            self._escalations.get_record,
            EscalationRecord.make_id(record.tenant_id, record.item_id, record.original_recipient_id, next_level),
        )
        if successor is not None:
            # Notices are deduplicated per day, so repeating one is safe.
            await self._notify(successor, rule)
            await self._close_handoff(record)
            return RecordOutcome.ESCALATED

        try:
            recipient_id = await asyncio.to_thread(
                self._resolve, record.tenant_id, record.original_recipient_id, next_level,
            )
        except NoRecipientError:
            return await self._expire(record, EscalationStatus.ESCALATED, f"no recipient at level {next_level}")
        return await self._hand_off(record, recipient_id, rule, now)

    def _resolve(self, tenant_id: str, employee_id: str, level: int) -> str:
        if level > self._max_level:
            raise NoRecipientError(tenant_id, employee_id, level)
        recipient_id = self._resolver.resolve_next(tenant_id, employee_id, level)
        if recipient_id is None:
            raise NoRecipientError(tenant_id, employee_id, level)
        return recipient_id

    async def _expire(
        self, record: EscalationRecord, expected: EscalationStatus, reason: str,
    ) -> RecordOutcome:
        expired = await asyncio.to_thread(
            self._escalations.update_record_status,
            record.id, expected, EscalationStatus.EXPIRED, reason=reason, handoff=None,
        )
        if not expired:
            logger.info("Escalation %s changed before it could expire", record.id)
            return RecordOutcome.SKIPPED
        logger.info("Escalation %s expired: %s", record.id, reason)
        return RecordOutcome.EXPIRED

    async def _release_claim(self, record: EscalationRecord) -> None:
        """Put a claimed record back to pending so the next sweep retries it."""
        try:
            await asyncio.to_thread(
                self._escalations.update_record_status,
                record.id, EscalationStatus.ESCALATED, EscalationStatus.PENDING,
                escalated_at=None, reason=None, handoff=None,
            )
        except SentinelError as exc:
            logger.error("Could not release claim on escalation %s: %s", record.id, exc)

    async def _close_handoff(self, record: EscalationRecord) -> None:
        try:
            await asyncio.to_thread(
                self._escalations.update_record_status,
                record.id, EscalationStatus.ESCALATED, EscalationStatus.ESCALATED, handoff=None,
            )
        except SentinelError as exc:
            logger.warning("Hand-off for %s stays open until the next sweep: %s", record.id, exc)

    def rule_for(self, tenant_id: str, level: int) -> EscalationRule:
        """Tenant rule, else global rule, else configured defaults."""
        rule = self._escalations.get_rule(tenant_id, level)
        if rule is not None:
            return rule
        logger.warning("No escalation rule for level %d; using defaults", level)
        return EscalationRule(
            level=level,
            delay_hours=self._default_delay_hours,
            channels=list(self._default_channels),
        )

    # ------------------------------------------------------------------
    # Chain lifecycle
    # ------------------------------------------------------------------

    async def open_chain(
        self,
        tenant_id: str,
        item_id: str,
        employee_id: str,
        now: datetime | None = None,
    ) -> EscalationRecord | None:
        """Start escalating an unacknowledged reminder at level 1."""
        now = now or self._clock()
        existing = await asyncio.to_thread(self._escalations.list_chain, tenant_id, item_id, employee_id)
        for record in existing:
            if record.status == EscalationStatus.PENDING:
                return record
        if existing:
            logger.info("Chain for item %s / %s already closed", item_id, employee_id)
            return None

        try:
            recipient_id = await asyncio.to_thread(self._resolve, tenant_id, employee_id, 1)
        except NoRecipientError:
            logger.info("No level-1 recipient for employee %s; chain not opened", employee_id)
            return None

        rule = await asyncio.to_thread(self.rule_for, tenant_id, 1)
        record = EscalationRecord(
            id=EscalationRecord.make_id(tenant_id, item_id, employee_id, 1),
            tenant_id=tenant_id,
            item_id=item_id,
            original_recipient_id=employee_id,
            level=1,
            current_recipient_id=recipient_id,
            previous_recipient_id=employee_id,
            status=EscalationStatus.PENDING,
            sent_at=now,
            next_escalation_at=now + timedelta(hours=rule.delay_hours),
        )
        if not await asyncio.to_thread(self._escalations.insert_record, record):
            return await asyncio.to_thread(self._escalations.get_record, record.id)

        await self._notify(record, rule)
        return record

    def acknowledge(self, record_id: str, actor_id: str, now: datetime | None = None) -> EscalationRecord:
        record = self._require(record_id)
        self._check_actor(record, actor_id)
        ok = self._escalations.update_record_status(
            record_id,
            EscalationStatus.PENDING,
            EscalationStatus.ACKNOWLEDGED,
            acknowledged_at=now or self._clock(),
            acknowledged_by=actor_id,
        )
        if not ok:
            raise InvalidTransitionError("acknowledge", self._require(record_id).status)
        return self._require(record_id)

    def resolve(self, record_id: str, actor_id: str, notes: str | None = None,
                now: datetime | None = None) -> EscalationRecord:
        record = self._require(record_id)
        self._check_actor(record, actor_id)
        fields = {
            "resolved_at": now or self._clock(),
            "resolution_notes": notes,
            "acknowledged_by": record.acknowledged_by or actor_id,
        }
        for expected in (EscalationStatus.PENDING, EscalationStatus.ACKNOWLEDGED):
            if self._escalations.update_record_status(
                record_id, expected, EscalationStatus.RESOLVED, **fields,
            ):
                return self._require(record_id)
        raise InvalidTransitionError("resolve", self._require(record_id).status)

    def chain(self, tenant_id: str, item_id: str, original_recipient_id: str) -> list[EscalationRecord]:
        return self._escalations.list_chain(tenant_id, item_id, original_recipient_id)

    def _require(self, record_id: str) -> EscalationRecord:
        record = self._escalations.get_record(record_id)
        if record is None:
            raise NotFoundError(f"Escalation {record_id} not found")
        return record

    @staticmethod
    def _check_actor(record: EscalationRecord, actor_id: str) -> None:
        # TODO: reject non-recipients once product confirms who may close an escalation.
        if actor_id != record.current_recipient_id:
            logger.warning(
                "Escalation %s handled by %s, current recipient is %s",
                record.id, actor_id, record.current_recipient_id,
            )

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    async def _notify(self, record: EscalationRecord, rule: EscalationRule) -> dict[str, ChannelOutcome]:
        """Tell the record's recipient in-app and on each channel. Failures are logged, never raised."""
        try:
            payload = await asyncio.to_thread(self._build_payload, record, rule)
            await self._post_in_app(record, payload)
            outcomes = await self._dispatcher.dispatch_to(
                record.tenant_id,
                f"escalation:{record.id}",
                record.current_recipient_id,
                rule.channels or self._default_channels,
                payload,
            )
        except Exception:
            logger.exception("Escalation notice for %s failed", record.id)
            return {}
        for outcome in outcomes.values():
            if outcome.status == NotificationStatus.FAILED:
                logger.warning(
                    "Escalation %s: %s delivery failed: %s", record.id, outcome.channel, outcome.error,
                )
        return outcomes

    async def _post_in_app(self, record: EscalationRecord, payload: NotificationPayload) -> None:
        if self._inbox is None:
            return
        note = InAppNotification(
            id=f"escalation:{record.id}",
            tenant_id=record.tenant_id,
            recipient_id=record.current_recipient_id,
            title=payload.title,
            message=payload.body,
            priority=payload.priority,
            action_url=f"/items/{record.item_id}",
            subject_id=record.item_id,
            created_at=self._clock(),
        )
        try:
            await asyncio.to_thread(self._inbox.add, note)
        except SentinelError as exc:
            logger.error("In-app notification for %s failed: %s", record.id, exc)

    def _build_payload(self, record: EscalationRecord, rule: EscalationRule) -> NotificationPayload:
        item = self._items.get_item(record.item_id) if self._items is not None else None
        variables = {
            "employee_name": self._contact_name(record.tenant_id, record.original_recipient_id, "Employee"),
            "supervisor_name": self._contact_name(
                record.tenant_id, record.previous_recipient_id, "previous recipient",
            ),
            "item_title": item.title if item else "Item",
            "item_ref": (item.ref_number or "") if item else "",
            "level_name": level_name(record.level),
        }
        return NotificationPayload(
            title=f"Escalation - {level_name(record.level)}",
            body=render_template(rule.message_template or DEFAULT_ESCALATION_TEMPLATE, variables),
            priority=Priority.CRITICAL if record.level >= 3 else Priority.HIGH,
            action_url=f"{self._app_base_url}/items/{record.item_id}" if self._app_base_url else None,
            extras={"escalation_id": record.id, "level": record.level},
        )

    def _contact_name(self, tenant_id: str, contact_id: str | None, fallback: str) -> str:
        if self._directory is None or not contact_id:
            return fallback
        contact = self._directory.get_contact(tenant_id, contact_id)
        return contact.name if contact and contact.name else fallback
