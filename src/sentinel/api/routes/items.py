"""Item workflow endpoints: available actions, transitions, audit timeline."""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from sentinel.api.deps import get_services
from sentinel.core.exceptions import NotFoundError
from sentinel.models.workflow import ActionOption, CompletionProof, Role, TransitionLogEntry, WorkflowStatus
from sentinel.services import Services

router = APIRouter(tags=["items"])


class ActionRequest(BaseModel):
    actor_id: str
    actor_role: Role
    reason: Optional[str] = None
    completion: Optional[CompletionProof] = None
    channel: str = "web"


class ActionResponse(BaseModel):
    item_id: str
    action: str
    workflow_status: WorkflowStatus


@router.get("/{item_id}/actions", response_model=list[ActionOption])
async def list_actions(
    item_id: str,
    role: Role = Query(...),
    services: Services = Depends(get_services),
) -> list[ActionOption]:
    item = await asyncio.to_thread(services.stores.items.get_item, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found")
    return services.workflow.available_actions(item.workflow_status, role)


@router.post("/{item_id}/actions/{action}", response_model=ActionResponse)
async def apply_action(
    item_id: str,
    action: str,
    body: ActionRequest,
    services: Services = Depends(get_services),
) -> ActionResponse:
    new_status = await services.workflow.apply_action(
        item_id,
        action,
        body.actor_id,
        body.actor_role,
        reason=body.reason,
        completion=body.completion,
        channel=body.channel,
    )
    return ActionResponse(item_id=item_id, action=action, workflow_status=new_status)


@router.get("/{item_id}/timeline", response_model=list[TransitionLogEntry])
async def timeline(
    item_id: str,
    limit: int = Query(20, ge=1, le=200),
    services: Services = Depends(get_services),
) -> list[TransitionLogEntry]:
    return await asyncio.to_thread(services.workflow.timeline, item_id, limit)
