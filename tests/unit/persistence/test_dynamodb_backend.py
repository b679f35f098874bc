"""Unit tests for the DynamoDB row-store backends using moto."""

from __future__ import annotations

from datetime import timedelta

import boto3
import pytest
from moto import mock_aws

from sentinel.core.exceptions import CacheError, StoreError
from sentinel.models.escalation import (
    HANDOFF_OPEN,
    EscalationRecord,
    EscalationRule,
    EscalationStatus,
    OrganizationalEdge,
    RunSummary,
)
from sentinel.models.notification import (
    HR_ROLE,
    ChannelOutcome,
    Contact,
    InAppNotification,
    NotificationLogEntry,
    NotificationStatus,
    Priority,
)
from sentinel.models.workflow import Item, TransitionLogEntry, WorkflowStatus
from sentinel.persistence.dynamodb_backend import (
    AUTOMATION_RUNS_TABLE,
    DynamoDBDirectory,
    DynamoDBEscalationStore,
    DynamoDBItemStore,
    DynamoDBNotificationInbox,
    DynamoDBNotificationLog,
    create_tables,
)
from sentinel.persistence.memory_backend import MemoryCacheBackend
from tests.fakes import NOW, TENANT

TABLE_SUFFIX = "-test"
REGION = "us-east-1"

# ---------- helpers ----------


def _record(item_id: str = "item-1", level: int = 1, due_in: timedelta = timedelta(hours=-1),
            status: EscalationStatus = EscalationStatus.PENDING) -> EscalationRecord:
    return EscalationRecord(
        id=EscalationRecord.make_id(TENANT, item_id, "emp", level),
        tenant_id=TENANT,
        item_id=item_id,
        original_recipient_id="emp",
        level=level,
        current_recipient_id="sup",
        status=status,
        next_escalation_at=NOW + due_in,
    )


class _FailingCache:
    def get(self, key):
        raise CacheError("redis down")

    def setex(self, key, ttl, value):
        raise CacheError("redis down")

    def delete(self, key):
        raise CacheError("redis down")


# ---------- fixtures ----------

@pytest.fixture
def aws():
    with mock_aws():
        ddb = boto3.resource("dynamodb", region_name=REGION)
        create_tables(ddb, suffix=TABLE_SUFFIX)
        yield ddb


@pytest.fixture
def items(aws):
    return DynamoDBItemStore(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def escalations(aws):
    return DynamoDBEscalationStore(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def cached_escalations(aws):
    cache = MemoryCacheBackend()
    return DynamoDBEscalationStore(table_suffix=TABLE_SUFFIX, region=REGION, cache=cache), cache


@pytest.fixture
def directory(aws):
    return DynamoDBDirectory(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def notification_log(aws):
    return DynamoDBNotificationLog(table_suffix=TABLE_SUFFIX, region=REGION)


@pytest.fixture
def inbox(aws):
    return DynamoDBNotificationInbox(table_suffix=TABLE_SUFFIX, region=REGION)


# ---------- items ----------

class TestItemStore:
    def _put(self, items, status=WorkflowStatus.IN_PROGRESS):
        items.put_item(Item(
            id="item-1", tenant_id=TENANT, title="Permit", workflow_status=status,
            due_at=NOW, created_by="admin", recipient_ids=["emp"],
        ))

    def test_round_trip(self, items):
        self._put(items)
        item = items.get_item("item-1")
        assert item.title == "Permit"
        assert item.due_at == NOW
        assert item.recipient_ids == ["emp"]

    def test_missing_item(self, items):
        assert items.get_item("nope") is None

    def test_compare_and_swap_succeeds_on_expected_status(self, items):
        self._put(items)
        ok = items.update_item_status(
            "item-1", WorkflowStatus.IN_PROGRESS, WorkflowStatus.DONE_PENDING_SUPERVISOR,
            completed_by="emp", completed_at=NOW,
        )
        assert ok
        item = items.get_item("item-1")
        assert item.workflow_status == WorkflowStatus.DONE_PENDING_SUPERVISOR
        assert item.completed_by == "emp"
        assert item.completed_at == NOW

    def test_compare_and_swap_fails_on_stale_status(self, items):
        self._put(items, WorkflowStatus.DONE_PENDING_SUPERVISOR)
        assert not items.update_item_status(
            "item-1", WorkflowStatus.IN_PROGRESS, WorkflowStatus.DONE_PENDING_SUPERVISOR,
        )

    def test_compare_and_swap_fails_on_missing_item(self, items):
        assert not items.update_item_status("ghost", WorkflowStatus.NEW, WorkflowStatus.ACKNOWLEDGED)

    def test_transitions_newest_first(self, items):
        for i, (old, new) in enumerate([
            (WorkflowStatus.NEW, WorkflowStatus.ACKNOWLEDGED),
            (WorkflowStatus.ACKNOWLEDGED, WorkflowStatus.IN_PROGRESS),
        ]):
            items.append_transition(TransitionLogEntry(
                item_id="item-1", old_status=old, new_status=new, actor="emp",
                timestamp=NOW + timedelta(minutes=i),
            ))
        timeline = items.list_transitions("item-1")
        assert [e.new_status for e in timeline] == [WorkflowStatus.IN_PROGRESS, WorkflowStatus.ACKNOWLEDGED]
        assert len(items.list_transitions("item-1", limit=1)) == 1


# ---------- escalation records ----------

class TestEscalationRecords:
    def test_insert_if_absent(self, escalations):
        assert escalations.insert_record(_record())
        assert not escalations.insert_record(_record())
        assert escalations.get_record(_record().id).level == 1

    def test_conditional_status_update(self, escalations):
        escalations.insert_record(_record())
        assert escalations.update_record_status(
            _record().id, EscalationStatus.PENDING, EscalationStatus.ESCALATED, escalated_at=NOW,
        )
        assert not escalations.update_record_status(
            _record().id, EscalationStatus.PENDING, EscalationStatus.ESCALATED, escalated_at=NOW,
        )
        record = escalations.get_record(_record().id)
        assert record.status == EscalationStatus.ESCALATED
        assert record.escalated_at == NOW

    def test_none_field_removes_attribute(self, escalations):
        escalations.insert_record(_record())
        escalations.update_record_status(
            _record().id, EscalationStatus.PENDING, EscalationStatus.ESCALATED, escalated_at=NOW,
        )
        escalations.update_record_status(
            _record().id, EscalationStatus.ESCALATED, EscalationStatus.PENDING, escalated_at=None,
        )
        assert escalations.get_record(_record().id).escalated_at is None

    def test_list_due_oldest_first_and_pending_only(self, escalations):
        escalations.insert_record(_record("a", due_in=timedelta(hours=-1)))
        escalations.insert_record(_record("b", due_in=timedelta(hours=-10)))
        escalations.insert_record(_record("c", due_in=timedelta(hours=2)))
        escalations.insert_record(_record("d", due_in=timedelta(hours=-20), status=EscalationStatus.ACKNOWLEDGED))

        due = escalations.list_due(NOW, 10)
        assert [r.item_id for r in due] == ["b", "a"]
        assert [r.item_id for r in escalations.list_due(NOW, 1)] == ["b"]

    def test_open_handoffs_are_claimed_records_past_the_cutoff(self, escalations):
        for item_id, claimed_ago in (("old", 60), ("fresh", 1), ("done", 90)):
            escalations.insert_record(_record(item_id))
            escalations.update_record_status(
                _record(item_id).id, EscalationStatus.PENDING, EscalationStatus.ESCALATED,
                escalated_at=NOW - timedelta(minutes=claimed_ago), handoff=HANDOFF_OPEN,
            )
        escalations.update_record_status(
            _record("done").id, EscalationStatus.ESCALATED, EscalationStatus.ESCALATED, handoff=None,
        )

        stuck = escalations.list_open_handoffs(NOW - timedelta(minutes=15), 10)

        assert [r.item_id for r in stuck] == ["old"]
        assert stuck[0].handoff == HANDOFF_OPEN

    def test_list_chain_by_level(self, escalations):
        escalations.insert_record(_record(level=1, status=EscalationStatus.ESCALATED))
        escalations.insert_record(_record(level=2))
        chain = escalations.list_chain(TENANT, "item-1", "emp")
        assert [r.level for r in chain] == [1, 2]
        assert escalations.list_chain(TENANT, "other", "emp") == []

    def test_missing_table_raises_store_error(self, aws):
        store = DynamoDBEscalationStore(table_suffix="-absent", region=REGION)
        with pytest.raises(StoreError):
            store.list_due(NOW, 10)

    def test_save_run(self, escalations, aws):
        escalations.save_run(RunSummary(started_at=NOW, processed=3, escalated=2, errors=1))
        rows = aws.Table(f"{AUTOMATION_RUNS_TABLE}{TABLE_SUFFIX}").scan()["Items"]
        assert len(rows) == 1
        assert rows[0]["PK"] == "JOB#process_escalations"
        assert rows[0]["escalated"] == 2


# ---------- escalation rules ----------

class TestEscalationRules:
    def test_tenant_rule_preferred(self, escalations):
        escalations.put_rule(EscalationRule(level=2, delay_hours=48))
        escalations.put_rule(EscalationRule(level=2, tenant_id=TENANT, delay_hours=6))
        assert escalations.get_rule(TENANT, 2).delay_hours == 6

    def test_falls_back_to_global(self, escalations):
        escalations.put_rule(EscalationRule(level=1, delay_hours=12, channels=["telegram"]))
        rule = escalations.get_rule("new-tenant", 1)
        assert rule.delay_hours == 12
        assert rule.channels == ["telegram"]

    def test_inactive_tenant_rule_falls_back(self, escalations):
        escalations.put_rule(EscalationRule(level=1, delay_hours=12))
        escalations.put_rule(EscalationRule(level=1, tenant_id=TENANT, delay_hours=1, is_active=False))
        assert escalations.get_rule(TENANT, 1).delay_hours == 12

    def test_no_rule(self, escalations):
        assert escalations.get_rule(TENANT, 3) is None

    def test_caches_each_row_under_its_own_key(self, cached_escalations):
        store, cache = cached_escalations
        store.put_rule(EscalationRule(level=1, delay_hours=12))

        store.get_rule(TENANT, 1)

        assert cache.get(f"escalation_rule:{TENANT}:1") == "null"
        cached = cache.get("escalation_rule:GLOBAL:1")
        assert cached is not None
        assert '"delay_hours":12' in cached

    def test_global_change_reaches_tenants_without_own_rule(self, cached_escalations):
        store, _ = cached_escalations
        store.put_rule(EscalationRule(level=1, delay_hours=12))
        assert store.get_rule(TENANT, 1).delay_hours == 12

        store.put_rule(EscalationRule(level=1, delay_hours=30))

        assert store.get_rule(TENANT, 1).delay_hours == 30

    def test_new_tenant_rule_replaces_cached_miss(self, cached_escalations):
        store, _ = cached_escalations
        store.put_rule(EscalationRule(level=1, delay_hours=12))
        store.get_rule(TENANT, 1)

        store.put_rule(EscalationRule(level=1, tenant_id=TENANT, delay_hours=2))

        assert store.get_rule(TENANT, 1).delay_hours == 2

    def test_put_rule_invalidates_cache(self, cached_escalations):
        store, cache = cached_escalations
        store.put_rule(EscalationRule(level=1, delay_hours=12))
        store.get_rule(None, 1)
        store.put_rule(EscalationRule(level=1, delay_hours=30))
        assert store.get_rule(None, 1).delay_hours == 30

    def test_cache_failure_degrades_to_table_read(self, aws):
        store = DynamoDBEscalationStore(table_suffix=TABLE_SUFFIX, region=REGION, cache=_FailingCache())
        store.put_rule(EscalationRule(level=1, delay_hours=12))
        assert store.get_rule(TENANT, 1).delay_hours == 12


# ---------- directory ----------

class TestDirectory:
    def test_edge_round_trip(self, directory):
        directory.put_edge(OrganizationalEdge(tenant_id=TENANT, employee_id="emp", supervisor_id="sup"))
        edge = directory.get_edge(TENANT, "emp")
        assert edge.supervisor_id == "sup"
        assert edge.manager_id is None
        assert directory.get_edge("t2", "emp") is None

    def test_hr_contacts_filter(self, directory):
        directory.put_contact(Contact(id="hr-1", tenant_id=TENANT, role=HR_ROLE))
        directory.put_contact(Contact(id="hr-2", tenant_id=TENANT, role=HR_ROLE, is_active=False))
        directory.put_contact(Contact(id="emp", tenant_id=TENANT, role="employee"))
        directory.put_contact(Contact(id="hr-x", tenant_id="t2", role=HR_ROLE))

        assert [c.id for c in directory.list_hr_contacts(TENANT)] == ["hr-1"]


# ---------- notification log ----------

class TestNotificationLog:
    def _entry(self, **kw) -> NotificationLogEntry:
        kw.setdefault("channel", "telegram")
        return NotificationLogEntry(
            subject_id="escalation:x", recipient_id="sup", day_bucket="2025-03-10",
            created_at=NOW, **kw,
        )

    def test_claim_once(self, notification_log):
        assert notification_log.claim(self._entry())
        assert not notification_log.claim(self._entry())

    def test_key_ignores_channel(self, notification_log):
        notification_log.claim(self._entry())
        other = self._entry().model_copy(update={"channel": "whatsapp"})
        assert not notification_log.claim(other)

    def test_next_day_is_separate(self, notification_log):
        notification_log.claim(self._entry())
        assert notification_log.claim(self._entry().model_copy(update={"day_bucket": "2025-03-11"}))

    def test_record_outcome(self, notification_log):
        notification_log.claim(self._entry(channel="telegram,whatsapp"))
        notification_log.record_outcome(self._entry(
            channel="telegram,whatsapp",
            status=NotificationStatus.SENT,
            provider_message_id="42",
            error="whatsapp: gateway timeout",
            outcomes={
                "telegram": ChannelOutcome(
                    channel="telegram", status=NotificationStatus.SENT, provider_message_id="42",
                ),
                "whatsapp": ChannelOutcome(
                    channel="whatsapp", status=NotificationStatus.FAILED, error="gateway timeout",
                ),
            },
        ))
        entry = notification_log.get_entry("escalation:x", "sup", "2025-03-10")
        assert entry.status == NotificationStatus.SENT
        assert entry.provider_message_id == "42"
        assert entry.outcomes["whatsapp"].status == NotificationStatus.FAILED
        assert entry.outcomes["telegram"].provider_message_id == "42"


# ---------- in-app inbox ----------

class TestNotificationInbox:
    def _note(self, note_id: str, minutes: int = 0, **kw) -> InAppNotification:
        return InAppNotification(
            id=note_id, tenant_id=TENANT, recipient_id="mgr", title="Escalation - Manager",
            message="Please review", priority=Priority.HIGH, action_url="/items/item-1",
            created_at=NOW + timedelta(minutes=minutes), **kw,
        )

    def test_add_is_insert_if_absent(self, inbox):
        assert inbox.add(self._note("escalation:a"))
        assert not inbox.add(self._note("escalation:a"))
        assert len(inbox.list_for(TENANT, "mgr")) == 1

    def test_newest_first_and_scoped_to_recipient(self, inbox):
        inbox.add(self._note("escalation:a", minutes=0))
        inbox.add(self._note("escalation:b", minutes=5))
        inbox.add(self._note("escalation:c").model_copy(update={"recipient_id": "dir"}))

        notes = inbox.list_for(TENANT, "mgr")

        assert [n.id for n in notes] == ["escalation:b", "escalation:a"]
        assert notes[0].priority == Priority.HIGH
        assert notes[0].action_url == "/items/item-1"
        assert [n.id for n in inbox.list_for(TENANT, "mgr", limit=1)] == ["escalation:b"]

    def test_mark_read_keeps_first_read_time(self, inbox):
        inbox.add(self._note("escalation:a"))

        assert inbox.mark_read(TENANT, "mgr", "escalation:a", NOW)
        assert inbox.mark_read(TENANT, "mgr", "escalation:a", NOW + timedelta(hours=1))

        [note] = inbox.list_for(TENANT, "mgr")
        assert note.read_at == NOW

    def test_mark_read_unknown(self, inbox):
        assert not inbox.mark_read(TENANT, "mgr", "nope", NOW)
