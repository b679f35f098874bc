"""DynamoDB row-store backends.

Conditional writes (``ConditionExpression``) provide the compare-and-swap on
``status`` / ``workflow_status`` and the insert-if-absent used for chain
successors and notification dedup. A failed condition is reported as
``False``; every other ``ClientError`` becomes ``StoreError``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from sentinel.core.exceptions import CacheError, StoreError
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

logger = logging.getLogger(__name__)

ITEMS_TABLE = "sentinel-items"
ESCALATION_LOG_TABLE = "sentinel-escalation-log"
ESCALATION_RULES_TABLE = "sentinel-escalation-rules"
HIERARCHY_TABLE = "sentinel-org-hierarchy"
CONTACTS_TABLE = "sentinel-contacts"
NOTIFICATION_LOG_TABLE = "sentinel-notification-log"
IN_APP_NOTIFICATIONS_TABLE = "sentinel-in-app-notifications"
AUTOMATION_RUNS_TABLE = "sentinel-automation-runs"

STATUS_DUE_INDEX = "status-due-index"
# Sparse: only records with a ``handoff`` attribute appear.
HANDOFF_INDEX = "handoff-index"

TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {"name": ITEMS_TABLE},
    {
        "name": ESCALATION_LOG_TABLE,
        "indexes": [
            {
                "IndexName": STATUS_DUE_INDEX,
                "KeySchema": [
                    {"AttributeName": "status", "KeyType": "HASH"},
                    {"AttributeName": "next_escalation_at", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
            {
                "IndexName": HANDOFF_INDEX,
                "KeySchema": [
                    {"AttributeName": "handoff", "KeyType": "HASH"},
                    {"AttributeName": "escalated_at", "KeyType": "RANGE"},
                ],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        "extra_attributes": [
            {"AttributeName": "status", "AttributeType": "S"},
            {"AttributeName": "next_escalation_at", "AttributeType": "S"},
            {"AttributeName": "handoff", "AttributeType": "S"},
            {"AttributeName": "escalated_at", "AttributeType": "S"},
        ],
    },
    {"name": ESCALATION_RULES_TABLE},
    {"name": HIERARCHY_TABLE},
    {"name": CONTACTS_TABLE},
    {"name": NOTIFICATION_LOG_TABLE},
    {"name": IN_APP_NOTIFICATIONS_TABLE},
    {"name": AUTOMATION_RUNS_TABLE},
]

GLOBAL = "GLOBAL"
# Cached marker for "no active rule stored under this key".
_NO_RULE = "null"


def create_tables(ddb: Any, suffix: str = "") -> list[str]:
    """Create all Sentinel tables. Skips tables that already exist."""
    client = ddb.meta.client
    existing = client.list_tables().get("TableNames", [])
    created: list[str] = []

    for defn in TABLE_DEFINITIONS:
        table_name = f"{defn['name']}{suffix}"
        if table_name in existing:
            logger.info("Table %s already exists, skipping", table_name)
            continue
        kwargs: dict[str, Any] = {
            "TableName": table_name,
            "KeySchema": [
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            "AttributeDefinitions": [
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
                *defn.get("extra_attributes", []),
            ],
            "BillingMode": "PAY_PER_REQUEST",
        }
        if defn.get("indexes"):
            kwargs["GlobalSecondaryIndexes"] = defn["indexes"]
        client.create_table(**kwargs)
        created.append(table_name)
        logger.info("Created table %s", table_name)
    return created


def _iso(value: datetime) -> str:
    """Fixed-width UTC timestamp so string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _to_dynamodb(obj: Any) -> Any:
    """Convert python values into DynamoDB-safe attribute values."""
    if isinstance(obj, datetime):
        return _iso(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: _to_dynamodb(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_dynamodb(i) for i in obj]
    return obj


def _decode_decimals(item: dict[str, Any]) -> dict[str, Any]:
    """Convert Decimal values in a DynamoDB item to int/float."""
    out: dict[str, Any] = {}
    for k, v in item.items():
        if isinstance(v, Decimal):
            out[k] = int(v) if v == int(v) else float(v)
        elif isinstance(v, dict):
            out[k] = _decode_decimals(v)
        elif isinstance(v, list):
            out[k] = [
                _decode_decimals(i) if isinstance(i, dict)
                else (int(i) if isinstance(i, Decimal) and i == int(i) else float(i) if isinstance(i, Decimal) else i)
                for i in v
            ]
        else:
            out[k] = v
    return out


def _model_item(model: BaseModel, **keys: str) -> dict[str, Any]:
    data = {k: v for k, v in model.model_dump().items() if v is not None}
    return {**_to_dynamodb(data), **keys}


def rule_item(rule: EscalationRule) -> dict[str, Any]:
    """Row layout for an escalation rule; tenant_id=None is stored under GLOBAL."""
    return _model_item(rule, PK=f"TENANT#{rule.tenant_id or GLOBAL}", SK=f"LEVEL#{rule.level}")


def _is_condition_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class _DynamoDBBackend:
    """Shared table access for the Sentinel row-store backends."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None) -> None:
        self._table_suffix = table_suffix
        self._region = region
        self._endpoint_url = endpoint_url
        kwargs: dict = {"region_name": region}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._ddb = boto3.resource("dynamodb", **kwargs)

    def _table(self, base: str):
        return self._ddb.Table(f"{base}{self._table_suffix}")

    def _get_item(self, table_base: str, pk: str, sk: str) -> dict[str, Any] | None:
        """Get a single item by PK + SK. Returns None if not found."""
        try:
            resp = self._table(table_base).get_item(Key={"PK": pk, "SK": sk})
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"DynamoDB get failed for {table_base} {pk}/{sk}: {exc}") from exc
        item = resp.get("Item")
        return _decode_decimals(item) if item else None

    def _query(self, table_base: str, **kwargs: Any) -> list[dict[str, Any]]:
        try:
            resp = self._table(table_base).query(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"DynamoDB query failed on {table_base}: {exc}") from exc
        return [_decode_decimals(item) for item in resp.get("Items", [])]

    def _put(self, table_base: str, item: dict[str, Any]) -> None:
        try:
            self._table(table_base).put_item(Item=item)
        except (ClientError, BotoCoreError) as exc:
            raise StoreError(f"DynamoDB put failed on {table_base}: {exc}") from exc

    def _put_if_absent(self, table_base: str, item: dict[str, Any]) -> bool:
        try:
            self._table(table_base).put_item(
                Item=item, ConditionExpression="attribute_not_exists(PK)",
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                return False
            raise StoreError(f"DynamoDB conditional put failed on {table_base}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"DynamoDB conditional put failed on {table_base}: {exc}") from exc
        return True

    def _compare_and_set(self, table_base: str, key: dict[str, str], attr: str,
                         expected: str, new: str, fields: dict[str, Any]) -> bool:
        """SET attr = new (plus fields) only while attr still equals expected."""
        names = {"#st": attr}
        values: dict[str, Any] = {":expected": expected, ":new": new}
        sets = ["#st = :new"]
        removes: list[str] = []
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            if value is None:
                removes.append(f"#f{i}")
            else:
                values[f":f{i}"] = _to_dynamodb(value)
                sets.append(f"#f{i} = :f{i}")
        expression = "SET " + ", ".join(sets)
        if removes:
            expression += " REMOVE " + ", ".join(removes)
        try:
            self._table(table_base).update_item(
                Key=key,
                UpdateExpression=expression,
                ConditionExpression="attribute_exists(PK) AND #st = :expected",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                return False
            raise StoreError(f"DynamoDB conditional update failed on {table_base}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"DynamoDB conditional update failed on {table_base}: {exc}") from exc
        return True


class DynamoDBItemStore(_DynamoDBBackend):
    """Production IItemStore."""

    def get_item(self, item_id: str) -> Item | None:
        row = self._get_item(ITEMS_TABLE, f"ITEM#{item_id}", "META")
        return Item.model_validate(row) if row else None

    def put_item(self, item: Item) -> None:
        self._put(ITEMS_TABLE, _model_item(item, PK=f"ITEM#{item.id}", SK="META"))

    def update_item_status(
        self, item_id: str, expected: WorkflowStatus, new: WorkflowStatus, **fields: Any
    ) -> bool:
        return self._compare_and_set(
            ITEMS_TABLE, {"PK": f"ITEM#{item_id}", "SK": "META"},
            "workflow_status", expected.value, new.value, fields,
        )

    def append_transition(self, entry: TransitionLogEntry) -> None:
        sk = f"TRANSITION#{_iso(entry.timestamp)}#{uuid.uuid4().hex[:8]}"
        self._put(ITEMS_TABLE, _model_item(entry, PK=f"ITEM#{entry.item_id}", SK=sk))

    def list_transitions(self, item_id: str, limit: int = 20) -> list[TransitionLogEntry]:
        rows = self._query(
            ITEMS_TABLE,
            KeyConditionExpression=Key("PK").eq(f"ITEM#{item_id}") & Key("SK").begins_with("TRANSITION#"),
            ScanIndexForward=False,
            Limit=limit,
        )
        return [TransitionLogEntry.model_validate(r) for r in rows]


class DynamoDBEscalationStore(_DynamoDBBackend):
    """Production IEscalationStore with optional Redis caching of rules."""

    CACHE_TTL = 300  # 5 minutes

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None, cache: Any = None) -> None:
        super().__init__(table_suffix=table_suffix, region=region, endpoint_url=endpoint_url)
        self._cache = cache

    # ---- records ----

    def get_record(self, record_id: str) -> EscalationRecord | None:
        row = self._get_item(ESCALATION_LOG_TABLE, f"ESC#{record_id}", "RECORD")
        return EscalationRecord.model_validate(row) if row else None

    def insert_record(self, record: EscalationRecord) -> bool:
        return self._put_if_absent(
            ESCALATION_LOG_TABLE, _model_item(record, PK=f"ESC#{record.id}", SK="RECORD"),
        )

    def update_record_status(
        self,
        record_id: str,
        expected: EscalationStatus,
        new: EscalationStatus,
        **fields: Any,
    ) -> bool:
        return self._compare_and_set(
            ESCALATION_LOG_TABLE, {"PK": f"ESC#{record_id}", "SK": "RECORD"},
            "status", expected.value, new.value, fields,
        )

    def list_due(self, now: datetime, limit: int) -> list[EscalationRecord]:
        rows = self._query(
            ESCALATION_LOG_TABLE,
            IndexName=STATUS_DUE_INDEX,
            KeyConditionExpression=(
                Key("status").eq(EscalationStatus.PENDING.value)
                & Key("next_escalation_at").lte(_iso(now))
            ),
            ScanIndexForward=True,
            Limit=limit,
        )
        return [EscalationRecord.model_validate(r) for r in rows]

    def list_open_handoffs(self, claimed_before: datetime, limit: int) -> list[EscalationRecord]:
        rows = self._query(
            ESCALATION_LOG_TABLE,
            IndexName=HANDOFF_INDEX,
            KeyConditionExpression=(
                Key("handoff").eq(HANDOFF_OPEN) & Key("escalated_at").lte(_iso(claimed_before))
            ),
            ScanIndexForward=True,
            Limit=limit,
        )
        records = [EscalationRecord.model_validate(r) for r in rows]
        return [r for r in records if r.status == EscalationStatus.ESCALATED]

    def list_chain(
        self, tenant_id: str, item_id: str, original_recipient_id: str
    ) -> list[EscalationRecord]:
        # Levels are contiguous from 1, so walk ids until the first gap.
        chain: list[EscalationRecord] = []
        level = 1
        while True:
            record = self.get_record(
                EscalationRecord.make_id(tenant_id, item_id, original_recipient_id, level)
            )
            if record is None:
                return chain
            chain.append(record)
            level += 1

    # ---- rules ----

    def get_rule(self, tenant_id: str | None, level: int) -> EscalationRule | None:
        """Tenant rule, else the GLOBAL rule. Each row is cached under its own key."""
        if tenant_id:
            rule = self._load_rule(tenant_id, level)
            if rule is not None:
                return rule
        return self._load_rule(GLOBAL, level)

    def _load_rule(self, tenant: str, level: int) -> EscalationRule | None:
        cache_key = f"escalation_rule:{tenant}:{level}"

        if self._cache is not None:
            try:
                cached = self._cache.get(cache_key)
            except CacheError as exc:
                logger.warning("Rule cache read failed, reading table: %s", exc)
                cached = None
            if cached == _NO_RULE:
                return None
            if cached is not None:
                return EscalationRule.model_validate_json(cached)

        row = self._get_item(ESCALATION_RULES_TABLE, f"TENANT#{tenant}", f"LEVEL#{level}")
        rule = EscalationRule.model_validate(row) if row is not None else None
        if rule is not None and not rule.is_active:
            rule = None

        if self._cache is not None:
            try:
                self._cache.setex(
                    cache_key, self.CACHE_TTL, rule.model_dump_json() if rule else _NO_RULE,
                )
            except CacheError as exc:
                logger.warning("Rule cache write failed: %s", exc)
        return rule

    def put_rule(self, rule: EscalationRule) -> None:
        tenant = rule.tenant_id or GLOBAL
        self._put(ESCALATION_RULES_TABLE, rule_item(rule))
        if self._cache is not None:
            try:
                self._cache.delete(f"escalation_rule:{tenant}:{rule.level}")
            except CacheError as exc:
                logger.warning("Rule cache invalidation failed: %s", exc)

    # ---- automation runs ----

    def save_run(self, summary: RunSummary) -> None:
        self._put(
            AUTOMATION_RUNS_TABLE,
            _model_item(summary, PK=f"JOB#{summary.job_type}", SK=f"RUN#{_iso(summary.started_at)}"),
        )


class DynamoDBDirectory(_DynamoDBBackend):
    """Production IDirectory."""

    def get_edge(self, tenant_id: str, employee_id: str) -> OrganizationalEdge | None:
        row = self._get_item(HIERARCHY_TABLE, f"TENANT#{tenant_id}", f"EMPLOYEE#{employee_id}")
        return OrganizationalEdge.model_validate(row) if row else None

    def put_edge(self, edge: OrganizationalEdge) -> None:
        self._put(
            HIERARCHY_TABLE,
            _model_item(edge, PK=f"TENANT#{edge.tenant_id}", SK=f"EMPLOYEE#{edge.employee_id}"),
        )

    def get_contact(self, tenant_id: str, contact_id: str) -> Contact | None:
        row = self._get_item(CONTACTS_TABLE, f"TENANT#{tenant_id}", f"CONTACT#{contact_id}")
        return Contact.model_validate(row) if row else None

    def put_contact(self, contact: Contact) -> None:
        self._put(
            CONTACTS_TABLE,
            _model_item(contact, PK=f"TENANT#{contact.tenant_id}", SK=f"CONTACT#{contact.id}"),
        )

    def list_hr_contacts(self, tenant_id: str) -> list[Contact]:
        rows = self._query(
            CONTACTS_TABLE,
            KeyConditionExpression=Key("PK").eq(f"TENANT#{tenant_id}") & Key("SK").begins_with("CONTACT#"),
        )
        contacts = [Contact.model_validate(r) for r in rows]
        return [c for c in contacts if c.role == HR_ROLE and c.is_active]


class DynamoDBNotificationLog(_DynamoDBBackend):
    """Production INotificationLog. Dedup relies on insert-if-absent."""

    @staticmethod
    def _keys(subject_id: str, recipient_id: str, day_bucket: str) -> dict[str, str]:
        return {
            "PK": f"NOTIF#{subject_id}#{recipient_id}",
            "SK": f"DAY#{day_bucket}",
        }

    def claim(self, entry: NotificationLogEntry) -> bool:
        keys = self._keys(entry.subject_id, entry.recipient_id, entry.day_bucket)
        return self._put_if_absent(NOTIFICATION_LOG_TABLE, _model_item(entry, **keys))

    def record_outcome(self, entry: NotificationLogEntry) -> None:
        keys = self._keys(entry.subject_id, entry.recipient_id, entry.day_bucket)
        self._put(NOTIFICATION_LOG_TABLE, _model_item(entry, **keys))

    def get_entry(
        self, subject_id: str, recipient_id: str, day_bucket: str
    ) -> NotificationLogEntry | None:
        keys = self._keys(subject_id, recipient_id, day_bucket)
        row = self._get_item(NOTIFICATION_LOG_TABLE, keys["PK"], keys["SK"])
        return NotificationLogEntry.model_validate(row) if row else None


class DynamoDBNotificationInbox(_DynamoDBBackend):
    """Production INotificationInbox. One partition per recipient."""

    @staticmethod
    def _pk(tenant_id: str, recipient_id: str) -> str:
        return f"TENANT#{tenant_id}#USER#{recipient_id}"

    def add(self, notification: InAppNotification) -> bool:
        return self._put_if_absent(
            IN_APP_NOTIFICATIONS_TABLE,
            _model_item(
                notification,
                PK=self._pk(notification.tenant_id, notification.recipient_id),
                SK=f"NOTE#{notification.id}",
            ),
        )

    def list_for(self, tenant_id: str, recipient_id: str, limit: int = 20) -> list[InAppNotification]:
        rows = self._query(
            IN_APP_NOTIFICATIONS_TABLE,
            KeyConditionExpression=(
                Key("PK").eq(self._pk(tenant_id, recipient_id)) & Key("SK").begins_with("NOTE#")
            ),
        )
        notes = sorted(
            (InAppNotification.model_validate(r) for r in rows),
            key=lambda n: n.created_at,
            reverse=True,
        )
        return notes[:limit]

    def mark_read(self, tenant_id: str, recipient_id: str, notification_id: str, read_at: datetime) -> bool:
        key = {"PK": self._pk(tenant_id, recipient_id), "SK": f"NOTE#{notification_id}"}
        try:
            self._table(IN_APP_NOTIFICATIONS_TABLE).update_item(
                Key=key,
                UpdateExpression="SET read_at = if_not_exists(read_at, :r)",
                ConditionExpression="attribute_exists(PK)",
                ExpressionAttributeValues={":r": _iso(read_at)},
            )
        except ClientError as exc:
            if _is_condition_failure(exc):
                return False
            raise StoreError(f"DynamoDB update failed on {IN_APP_NOTIFICATIONS_TABLE}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"DynamoDB update failed on {IN_APP_NOTIFICATIONS_TABLE}: {exc}") from exc
        return True

