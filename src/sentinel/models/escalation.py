"""Escalation chain, rule, hierarchy and run-summary models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

LEVEL_NAMES = ["Employee", "Supervisor", "Manager", "Director", "HR"]


def level_name(level: int) -> str:
    if 0 <= level < len(LEVEL_NAMES):
        return LEVEL_NAMES[level]
    return f"Level {level}"


class EscalationStatus(StrEnum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    EXPIRED = "expired"


# Set on a record when a sweep claims it; cleared once the successor exists
# and has been notified.
HANDOFF_OPEN = "open"

TERMINAL_STATUSES = frozenset({
    EscalationStatus.ACKNOWLEDGED,
    EscalationStatus.RESOLVED,
    EscalationStatus.EXPIRED,
})


class EscalationRecord(BaseModel):
    """One level of an escalation chain."""

    id: str
    tenant_id: str
    item_id: str
    original_recipient_id: str
    level: int = Field(ge=1)
    current_recipient_id: str
    previous_recipient_id: Optional[str] = None
    status: EscalationStatus = EscalationStatus.PENDING
    sent_at: Optional[datetime] = None
    next_escalation_at: datetime
    escalated_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    reason: Optional[str] = None
    handoff: Optional[str] = None

    @staticmethod
    def make_id(tenant_id: str, item_id: str, original_recipient_id: str, level: int) -> str:
        """Deterministic id: one record per chain level."""
        return f"{tenant_id}:{item_id}:{original_recipient_id}:L{level}"


class EscalationRule(BaseModel):
    """Per-level escalation configuration. tenant_id=None is the global default."""

    level: int
    tenant_id: Optional[str] = None
    delay_hours: int = 24
    recipient_role: str = ""
    channels: list[str] = Field(default_factory=list)
    message_template: str = ""
    is_active: bool = True


class OrganizationalEdge(BaseModel):
    """Reporting lines for one employee."""

    tenant_id: str
    employee_id: str
    supervisor_id: Optional[str] = None
    manager_id: Optional[str] = None
    director_id: Optional[str] = None
    department_id: Optional[str] = None


class RunStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class RunSummary(BaseModel):
    """Aggregate outcome of one sweep."""

    job_type: str = "process_escalations"
    status: RunStatus = RunStatus.SUCCESS
    started_at: datetime
    completed_at: Optional[datetime] = None
    processed: int = 0
    escalated: int = 0
    expired: int = 0
    skipped: int = 0
    recovered: int = 0
    errors: int = 0
    duration_ms: int = 0
