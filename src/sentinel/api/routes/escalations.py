"""Escalation endpoints: scheduled sweep trigger and recipient responses."""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from sentinel.api.deps import get_services
from sentinel.core.exceptions import StoreError
from sentinel.models.escalation import EscalationRecord
from sentinel.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["escalations"])

_bearer = HTTPBearer(auto_error=False)


class AcknowledgeRequest(BaseModel):
    actor_id: str


class ResolveRequest(BaseModel):
    actor_id: str
    notes: Optional[str] = None


class OpenChainRequest(BaseModel):
    tenant_id: str
    item_id: str
    employee_id: str


def require_trigger_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    services: Services = Depends(get_services),
) -> None:
    expected = services.settings.api.trigger_token
    supplied = credentials.credentials if credentials else ""
    if not expected or not secrets.compare_digest(supplied, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/run", dependencies=[Depends(require_trigger_token)])
async def run_sweep(services: Services = Depends(get_services)) -> Any:
    """Run one escalation sweep. Called by an external scheduler."""
    try:
        summary = await services.escalation.sweep()
    except StoreError as exc:
        logger.error("Escalation sweep aborted: %s", exc)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
    except Exception as exc:
        logger.exception("Escalation sweep failed")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
    return {
        "success": True,
        "processed": summary.processed,
        "escalated": summary.escalated,
        "expired": summary.expired,
        "skipped": summary.skipped,
        "recovered": summary.recovered,
        "errors": summary.errors,
        "duration_ms": summary.duration_ms,
    }


@router.post("/open", dependencies=[Depends(require_trigger_token)])
async def open_chain(body: OpenChainRequest, services: Services = Depends(get_services)) -> Any:
    """Start a level-1 escalation for an unacknowledged reminder.

    Returns the chain's pending record, or ``null`` when the chain is
    already closed or the employee has no supervisor.
    """
    record = await services.escalation.open_chain(body.tenant_id, body.item_id, body.employee_id)
    return {
        "success": True,
        "escalation": record.model_dump(mode="json") if record else None,
    }


@router.post("/{record_id}/acknowledge", response_model=EscalationRecord)
async def acknowledge(
    record_id: str,
    body: AcknowledgeRequest,
    services: Services = Depends(get_services),
) -> EscalationRecord:
    return await asyncio.to_thread(services.escalation.acknowledge, record_id, body.actor_id)


@router.post("/{record_id}/resolve", response_model=EscalationRecord)
async def resolve(
    record_id: str,
    body: ResolveRequest,
    services: Services = Depends(get_services),
) -> EscalationRecord:
    return await asyncio.to_thread(services.escalation.resolve, record_id, body.actor_id, body.notes)
