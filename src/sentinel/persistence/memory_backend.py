"""In-memory backends for unit tests and local development: dict-backed fakes.

Each conditional write runs under a lock so compare-and-swap semantics match
the DynamoDB backend.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any

from sentinel.models.escalation import (
    HANDOFF_OPEN,
    EscalationRecord,
    EscalationRule,
    EscalationStatus,
    OrganizationalEdge,
    RunSummary,
)
from sentinel.models.notification import HR_ROLE, Contact, InAppNotification, NotificationLogEntry
from sentinel.models.workflow import Item, TransitionLogEntry, WorkflowStatus

GLOBAL = "GLOBAL"


class MemoryItemStore:
    """Dict-backed IItemStore."""

    def __init__(self) -> None:
        self._items: dict[str, Item] = {}
        self._transitions: dict[str, list[TransitionLogEntry]] = {}
        self._lock = threading.Lock()

    def get_item(self, item_id: str) -> Item | None:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    def put_item(self, item: Item) -> None:
        with self._lock:
            self._items[item.id] = item.model_copy(deep=True)

    def update_item_status(
        self, item_id: str, expected: WorkflowStatus, new: WorkflowStatus, **fields: Any
    ) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.workflow_status != expected:
                return False
            self._items[item_id] = item.model_copy(
                update={"workflow_status": new, **fields}, deep=True
            )
            return True

    def append_transition(self, entry: TransitionLogEntry) -> None:
        with self._lock:
            self._transitions.setdefault(entry.item_id, []).append(entry)

    def list_transitions(self, item_id: str, limit: int = 20) -> list[TransitionLogEntry]:
        entries = list(self._transitions.get(item_id, []))
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]


class MemoryEscalationStore:
    """Dict-backed IEscalationStore."""

    def __init__(self) -> None:
        self._records: dict[str, EscalationRecord] = {}
        self._rules: dict[str, EscalationRule] = {}
        self._runs: list[RunSummary] = []
        self._lock = threading.Lock()

    @property
    def runs(self) -> list[RunSummary]:
        return list(self._runs)

    def all_records(self) -> list[EscalationRecord]:
        return [r.model_copy(deep=True) for r in self._snapshot()]

    def get_record(self, record_id: str) -> EscalationRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def insert_record(self, record: EscalationRecord) -> bool:
        with self._lock:
            if record.id in self._records:
                return False
            self._records[record.id] = record.model_copy(deep=True)
            return True

    def update_record_status(
        self,
        record_id: str,
        expected: EscalationStatus,
        new: EscalationStatus,
        **fields: Any,
    ) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None or record.status != expected:
                return False
            self._records[record_id] = record.model_copy(
                update={"status": new, **fields}, deep=True
            )
            return True

    def _snapshot(self) -> list[EscalationRecord]:
        with self._lock:
            return list(self._records.values())

    def list_due(self, now: datetime, limit: int) -> list[EscalationRecord]:
        due = [
            r for r in self._snapshot()
            if r.status == EscalationStatus.PENDING and r.next_escalation_at <= now
        ]
        due.sort(key=lambda r: r.next_escalation_at)
        return [r.model_copy(deep=True) for r in due[:limit]]

    def list_open_handoffs(self, claimed_before: datetime, limit: int) -> list[EscalationRecord]:
        stuck = [
            r for r in self._snapshot()
            if r.status == EscalationStatus.ESCALATED
            and r.handoff == HANDOFF_OPEN
            and r.escalated_at is not None
            and r.escalated_at <= claimed_before
        ]
        stuck.sort(key=lambda r: r.escalated_at)
        return [r.model_copy(deep=True) for r in stuck[:limit]]

    def list_chain(
        self, tenant_id: str, item_id: str, original_recipient_id: str
    ) -> list[EscalationRecord]:
        chain = [
            r for r in self._snapshot()
            if r.tenant_id == tenant_id
            and r.item_id == item_id
            and r.original_recipient_id == original_recipient_id
        ]
        return [r.model_copy(deep=True) for r in sorted(chain, key=lambda r: r.level)]

    def get_rule(self, tenant_id: str | None, level: int) -> EscalationRule | None:
        if tenant_id:
            rule = self._rules.get(f"{tenant_id}:{level}")
            if rule is not None and rule.is_active:
                return rule
        rule = self._rules.get(f"{GLOBAL}:{level}")
        if rule is not None and rule.is_active:
            return rule
        return None

    def put_rule(self, rule: EscalationRule) -> None:
        self._rules[f"{rule.tenant_id or GLOBAL}:{rule.level}"] = rule

    def save_run(self, summary: RunSummary) -> None:
        self._runs.append(summary)


class MemoryDirectory:
    """Dict-backed IDirectory."""

    def __init__(self) -> None:
        self._edges: dict[str, OrganizationalEdge] = {}
        self._contacts: dict[str, Contact] = {}

    def get_edge(self, tenant_id: str, employee_id: str) -> OrganizationalEdge | None:
        return self._edges.get(f"{tenant_id}:{employee_id}")

    def put_edge(self, edge: OrganizationalEdge) -> None:
        self._edges[f"{edge.tenant_id}:{edge.employee_id}"] = edge

    def get_contact(self, tenant_id: str, contact_id: str) -> Contact | None:
        return self._contacts.get(f"{tenant_id}:{contact_id}")

    def put_contact(self, contact: Contact) -> None:
        self._contacts[f"{contact.tenant_id}:{contact.id}"] = contact

    def list_hr_contacts(self, tenant_id: str) -> list[Contact]:
        return [
            c for c in self._contacts.values()
            if c.tenant_id == tenant_id and c.role == HR_ROLE and c.is_active
        ]


class MemoryNotificationLog:
    """Dict-backed INotificationLog."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str, str], NotificationLogEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(entry: NotificationLogEntry) -> tuple[str, str, str]:
        return (entry.subject_id, entry.recipient_id, entry.day_bucket)

    def entries(self) -> list[NotificationLogEntry]:
        with self._lock:
            return list(self._entries.values())

    def claim(self, entry: NotificationLogEntry) -> bool:
        with self._lock:
            key = self._key(entry)
            if key in self._entries:
                return False
            self._entries[key] = entry
            return True

    def record_outcome(self, entry: NotificationLogEntry) -> None:
        with self._lock:
            self._entries[self._key(entry)] = entry

    def get_entry(
        self, subject_id: str, recipient_id: str, day_bucket: str
    ) -> NotificationLogEntry | None:
        return self._entries.get((subject_id, recipient_id, day_bucket))


class MemoryNotificationInbox:
    """Dict-backed INotificationInbox."""

    def __init__(self) -> None:
        self._notes: dict[tuple[str, str], dict[str, InAppNotification]] = {}
        self._lock = threading.Lock()

    def add(self, notification: InAppNotification) -> bool:
        with self._lock:
            inbox = self._notes.setdefault((notification.tenant_id, notification.recipient_id), {})
            if notification.id in inbox:
                return False
            inbox[notification.id] = notification.model_copy(deep=True)
            return True

    def list_for(self, tenant_id: str, recipient_id: str, limit: int = 20) -> list[InAppNotification]:
        with self._lock:
            current = list(self._notes.get((tenant_id, recipient_id), {}).values())
        notes = sorted(
            current,
            key=lambda n: n.created_at,
            reverse=True,
        )
        return [n.model_copy(deep=True) for n in notes[:limit]]

    def mark_read(self, tenant_id: str, recipient_id: str, notification_id: str, read_at: datetime) -> bool:
        with self._lock:
            inbox = self._notes.get((tenant_id, recipient_id), {})
            note = inbox.get(notification_id)
            if note is None:
                return False
            if note.read_at is None:
                inbox[notification_id] = note.model_copy(update={"read_at": read_at})
            return True


class MemoryCacheBackend:
    """Dict-backed ICacheBackend."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)
