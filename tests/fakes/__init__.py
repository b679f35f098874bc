"""Shared test doubles: re-export memory backends plus a small org chart."""

from __future__ import annotations

from datetime import datetime, timezone

from sentinel.channels.mock_channel import MockChannel
from sentinel.models.escalation import OrganizationalEdge
from sentinel.models.notification import HR_ROLE, Contact
from sentinel.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryDirectory,
    MemoryEscalationStore,
    MemoryItemStore,
    MemoryNotificationInbox,
    MemoryNotificationLog,
)

__all__ = [
    "MemoryCacheBackend",
    "MemoryDirectory",
    "MemoryEscalationStore",
    "MemoryItemStore",
    "MemoryNotificationInbox",
    "MemoryNotificationLog",
    "MockChannel",
    "TENANT",
    "NOW",
    "FixedClock",
    "seed_org",
]

TENANT = "t1"
NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def seed_org(directory: MemoryDirectory, *, with_hr: bool = True) -> None:
    """emp -> sup -> mgr -> dir reporting line, plus two HR contacts."""
    directory.put_edge(OrganizationalEdge(
        tenant_id=TENANT, employee_id="emp",
        supervisor_id="sup", manager_id="mgr", director_id="dir",
    ))
    people = [
        ("emp", "Employee One", "employee"),
        ("sup", "Sam Supervisor", "supervisor"),
        ("mgr", "Morgan Manager", "manager"),
        ("dir", "Dana Director", "director"),
    ]
    for cid, name, role in people:
        directory.put_contact(Contact(
            id=cid, tenant_id=TENANT, name=name, role=role,
            telegram_id=f"tg-{cid}", phone="0501234567",
        ))
    if with_hr:
        directory.put_contact(Contact(
            id="hr-a", tenant_id=TENANT, name="HR A", role=HR_ROLE, telegram_id="tg-hr-a",
        ))
        directory.put_contact(Contact(
            id="hr-b", tenant_id=TENANT, name="HR B", role=HR_ROLE, is_primary_hr=True,
            telegram_id="tg-hr-b",
        ))
