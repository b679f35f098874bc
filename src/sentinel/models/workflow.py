"""Item lifecycle models: statuses, roles, items and the transition log."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkflowStatus(StrEnum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    DONE_PENDING_SUPERVISOR = "done_pending_supervisor"
    RETURNED = "returned"
    ESCALATED_TO_MANAGER = "escalated_to_manager"
    FINISHED = "finished"


class Role(StrEnum):
    EMPLOYEE = "employee"
    HR_USER = "hr_user"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"
    SYSTEM_ADMIN = "system_admin"


class Item(BaseModel):
    """A time-bound obligation (document, contract, task)."""

    id: str
    tenant_id: str
    title: str
    ref_number: Optional[str] = None
    workflow_status: WorkflowStatus = WorkflowStatus.NEW
    due_at: datetime
    created_by: str
    recipient_ids: list[str] = Field(default_factory=list)
    completion_description: Optional[str] = None
    completion_attachment_url: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None


class CompletionProof(BaseModel):
    """Optional evidence attached when an item is marked done."""

    description: Optional[str] = None
    attachment_url: Optional[str] = None


class TransitionLogEntry(BaseModel):
    """Audit record written once per successful transition."""

    model_config = ConfigDict(frozen=True)

    item_id: str
    old_status: WorkflowStatus
    new_status: WorkflowStatus
    reason: Optional[str] = None
    actor: str
    channel: str = "web"
    timestamp: datetime


class ActionOption(BaseModel):
    """An action a given role may take from a given status."""

    action: str
    label: str
    to_status: WorkflowStatus
    requires_reason: bool = False
