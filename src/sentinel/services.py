"""Service wiring: one place that turns settings into ready collaborators."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from sentinel.channels import create_channels
from sentinel.core.config import AppSettings
from sentinel.core.exceptions import SentinelError
from sentinel.core.protocols import IChannel
from sentinel.engine.dispatcher import NotificationDispatcher
from sentinel.engine.escalation import EscalationEngine
from sentinel.engine.resolver import RecipientResolver
from sentinel.engine.workflow import WorkflowStateMachine
from sentinel.persistence import Stores, create_persistence

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Engines plus the stores they share, built once per process."""

    settings: AppSettings
    stores: Stores
    dispatcher: NotificationDispatcher
    escalation: EscalationEngine
    workflow: WorkflowStateMachine

    async def health_check(self) -> dict[str, Any]:
        """Probe each backend with a cheap read."""
        checks: dict[str, str] = {}
        probes = {
            "escalations": lambda: self.stores.escalations.get_rule(None, 1),
            "directory": lambda: self.stores.directory.list_hr_contacts("__probe__"),
        }
        if self.stores.cache is not None:
            probes["cache"] = lambda: self.stores.cache.get("__probe__")
        for name, probe in probes.items():
            try:
                await asyncio.to_thread(probe)
                checks[name] = "ok"
            except SentinelError as exc:
                logger.warning("Readiness probe %s failed: %s", name, exc)
                checks[name] = "error"
        healthy = all(v == "ok" for v in checks.values())
        return {
            "status": "ready" if healthy else "degraded",
            "environment": self.settings.environment,
            "backend": self.settings.backend,
            "checks": checks,
        }


def build_services(
    settings: AppSettings | None = None,
    stores: Stores | None = None,
    channels: dict[str, IChannel] | None = None,
) -> Services:
    """Create wired-up engines from application settings."""
    if settings is None:
        settings = AppSettings()
    if stores is None:
        stores = create_persistence(settings)
    if channels is None:
        channels = create_channels(settings)

    notify = settings.notifications
    esc = settings.escalation

    dispatcher = NotificationDispatcher(
        stores.notification_log,
        channels,
        stores.directory,
        max_concurrency=notify.max_concurrency,
        timezone_name=notify.day_bucket_timezone,
    )
    escalation = EscalationEngine(
        stores.escalations,
        RecipientResolver(stores.directory),
        dispatcher,
        directory=stores.directory,
        items=stores.items,
        inbox=stores.inbox,
        max_level=esc.max_level,
        batch_size=esc.batch_size,
        default_delay_hours=esc.default_delay_hours,
        default_channels=esc.default_channels,
        handoff_grace_minutes=esc.handoff_grace_minutes,
        job_type=esc.job_type,
        app_base_url=notify.app_base_url,
    )
    workflow = WorkflowStateMachine(
        stores.items,
        dispatcher,
        completion_channels=notify.completion_channels,
        app_base_url=notify.app_base_url,
    )
    logger.info(
        "Services ready: backend=%s channels=%s", settings.backend, sorted(channels) or "none",
    )
    return Services(
        settings=settings,
        stores=stores,
        dispatcher=dispatcher,
        escalation=escalation,
        workflow=workflow,
    )
