"""In-app notification inbox endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query

from sentinel.api.deps import get_services
from sentinel.core.exceptions import NotFoundError
from sentinel.engine.dispatcher import utcnow
from sentinel.models.notification import InAppNotification
from sentinel.services import Services

router = APIRouter(tags=["inbox"])


@router.get("/{tenant_id}/{recipient_id}", response_model=list[InAppNotification])
async def list_notifications(
    tenant_id: str,
    recipient_id: str,
    limit: int = Query(20, ge=1, le=200),
    services: Services = Depends(get_services),
) -> list[InAppNotification]:
    return await asyncio.to_thread(services.stores.inbox.list_for, tenant_id, recipient_id, limit)


@router.post("/{tenant_id}/{recipient_id}/{notification_id}/read")
async def mark_read(
    tenant_id: str,
    recipient_id: str,
    notification_id: str,
    services: Services = Depends(get_services),
) -> dict[str, bool]:
    found = await asyncio.to_thread(
        services.stores.inbox.mark_read, tenant_id, recipient_id, notification_id, utcnow(),
    )
    if not found:
        raise NotFoundError(f"Notification {notification_id} not found")
    return {"read": True}
