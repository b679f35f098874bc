"""Protocol interfaces for all Sentinel collaborators.

Components receive these at construction time. Structural typing, no
inheritance required, easy to swap for the in-memory backends in tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sentinel.models.escalation import (
    EscalationRecord,
    EscalationRule,
    EscalationStatus,
    OrganizationalEdge,
    RunSummary,
)
from sentinel.models.notification import Contact, InAppNotification, NotificationLogEntry, SendResult
from sentinel.models.workflow import Item, TransitionLogEntry, WorkflowStatus


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

@runtime_checkable
class IItemStore(Protocol):
    """Items and their append-only transition log."""

    def get_item(self, item_id: str) -> Item | None: ...

    def put_item(self, item: Item) -> None: ...

    def update_item_status(
        self, item_id: str, expected: WorkflowStatus, new: WorkflowStatus, **fields: Any
    ) -> bool: ...

    def append_transition(self, entry: TransitionLogEntry) -> None: ...

    def list_transitions(self, item_id: str, limit: int = 20) -> list[TransitionLogEntry]: ...


# ---------------------------------------------------------------------------
# Escalation log and rules
# ---------------------------------------------------------------------------

@runtime_checkable
class IEscalationStore(Protocol):
    """Escalation records, per-level rules and automation-run summaries."""

    def get_record(self, record_id: str) -> EscalationRecord | None: ...

    def insert_record(self, record: EscalationRecord) -> bool: ...

    def update_record_status(
        self,
        record_id: str,
        expected: EscalationStatus,
        new: EscalationStatus,
        **fields: Any,
    ) -> bool: ...

    def list_due(self, now: datetime, limit: int) -> list[EscalationRecord]: ...

    def list_open_handoffs(self, claimed_before: datetime, limit: int) -> list[EscalationRecord]: ...

    def list_chain(
        self, tenant_id: str, item_id: str, original_recipient_id: str
    ) -> list[EscalationRecord]: ...

    def get_rule(self, tenant_id: str | None, level: int) -> EscalationRule | None: ...

    def put_rule(self, rule: EscalationRule) -> None: ...

    def save_run(self, summary: RunSummary) -> None: ...


# ---------------------------------------------------------------------------
# Directory: hierarchy and contacts
# ---------------------------------------------------------------------------

@runtime_checkable
class IDirectory(Protocol):
    """Organizational hierarchy and notifiable contacts."""

    def get_edge(self, tenant_id: str, employee_id: str) -> OrganizationalEdge | None: ...

    def put_edge(self, edge: OrganizationalEdge) -> None: ...

    def get_contact(self, tenant_id: str, contact_id: str) -> Contact | None: ...

    def put_contact(self, contact: Contact) -> None: ...

    def list_hr_contacts(self, tenant_id: str) -> list[Contact]: ...


# ---------------------------------------------------------------------------
# Notification log
# ---------------------------------------------------------------------------

@runtime_checkable
class INotificationLog(Protocol):
    """Dedup log keyed by (subject, recipient, day bucket)."""

    def claim(self, entry: NotificationLogEntry) -> bool: ...

    def record_outcome(self, entry: NotificationLogEntry) -> None: ...

    def get_entry(
        self, subject_id: str, recipient_id: str, day_bucket: str
    ) -> NotificationLogEntry | None: ...


@runtime_checkable
class INotificationInbox(Protocol):
    """In-app notifications, one inbox per (tenant, recipient)."""

    def add(self, notification: InAppNotification) -> bool: ...

    def list_for(
        self, tenant_id: str, recipient_id: str, limit: int = 20
    ) -> list[InAppNotification]: ...

    def mark_read(self, tenant_id: str, recipient_id: str, notification_id: str, read_at: datetime) -> bool: ...


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible cache interface."""

    def get(self, key: str) -> str | None: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

@runtime_checkable
class IChannel(Protocol):
    """One outbound transport (chat bot API, messaging gateway)."""

    name: str

    async def send(self, address: str, message: str) -> SendResult: ...
