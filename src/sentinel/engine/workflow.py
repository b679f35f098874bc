"""WorkflowStateMachine: role-gated item lifecycle transitions.

Transitions are static data looked up by action name. Applying one checks
the table, the actor's role grants, the reason requirement and the guard
rails, then writes the new status conditionally on the status it read.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from sentinel.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from sentinel.core.protocols import IItemStore
from sentinel.engine.dispatcher import Clock, NotificationDispatcher, utcnow
from sentinel.engine.templates import DEFAULT_COMPLETION_TEMPLATE, render_template
from sentinel.models.notification import NotificationPayload, NotificationStatus, Priority
from sentinel.models.workflow import (
    ActionOption,
    CompletionProof,
    Item,
    Role,
    TransitionLogEntry,
    WorkflowStatus as S,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    from_statuses: frozenset[S]
    to_status: S
    allowed_roles: frozenset[Role]
    label: str
    requires_reason: bool = False


_ANY_MEMBER = frozenset({Role.EMPLOYEE, Role.SUPERVISOR, Role.ADMIN, Role.SYSTEM_ADMIN})
_APPROVERS = frozenset({Role.SUPERVISOR, Role.ADMIN, Role.SYSTEM_ADMIN})

TRANSITIONS: dict[str, Transition] = {
    "acknowledge": Transition(frozenset({S.NEW}), S.ACKNOWLEDGED, _ANY_MEMBER, "Acknowledge"),
    "start": Transition(frozenset({S.ACKNOWLEDGED}), S.IN_PROGRESS, _ANY_MEMBER, "Start work"),
    "done": Transition(frozenset({S.IN_PROGRESS}), S.DONE_PENDING_SUPERVISOR, _ANY_MEMBER, "Mark done"),
    "approve": Transition(frozenset({S.DONE_PENDING_SUPERVISOR}), S.FINISHED, _APPROVERS, "Approve and finish"),
    "return": Transition(
        frozenset({S.DONE_PENDING_SUPERVISOR, S.ESCALATED_TO_MANAGER}), S.RETURNED,
        _APPROVERS, "Return", requires_reason=True,
    ),
    "escalate": Transition(
        frozenset({S.DONE_PENDING_SUPERVISOR}), S.ESCALATED_TO_MANAGER,
        frozenset({Role.SUPERVISOR}), "Escalate to manager", requires_reason=True,
    ),
    "manager_close": Transition(
        frozenset({S.ESCALATED_TO_MANAGER}), S.FINISHED,
        frozenset({Role.ADMIN, Role.SYSTEM_ADMIN}), "Close (manager)",
    ),
    "resubmit": Transition(frozenset({S.RETURNED}), S.IN_PROGRESS, _ANY_MEMBER, "Resubmit"),
}

# Roles each actor role acts as when matched against allowed_roles.
ROLE_GRANTS: dict[Role, frozenset[Role]] = {
    Role.EMPLOYEE: frozenset({Role.EMPLOYEE}),
    Role.HR_USER: frozenset({Role.EMPLOYEE}),
    Role.SUPERVISOR: frozenset({Role.SUPERVISOR}),
    Role.ADMIN: frozenset({Role.EMPLOYEE, Role.SUPERVISOR, Role.ADMIN}),
    Role.SYSTEM_ADMIN: frozenset(Role),
}


def _done_requires_in_progress(item: Item) -> str | None:
    if item.workflow_status != S.IN_PROGRESS:
        return "Cannot mark as done before work has started"
    return None


GuardRail = Callable[[Item], "str | None"]

# Domain rules enforced on top of the transition table.
GUARD_RAILS: dict[str, tuple[GuardRail, ...]] = {
    "done": (_done_requires_in_progress,),
}


def is_role_allowed(transition: Transition, role: Role) -> bool:
    return bool(transition.allowed_roles & ROLE_GRANTS[role])


class WorkflowStateMachine:
    """Validate and apply item lifecycle actions."""

    def __init__(
        self,
        items: IItemStore,
        dispatcher: NotificationDispatcher | None = None,
        *,
        completion_channels: list[str] | None = None,
        app_base_url: str = "",
        clock: Clock = utcnow,
    ) -> None:
        self._items = items
        self._dispatcher = dispatcher
        self._completion_channels = completion_channels or ["telegram", "whatsapp"]
        self._app_base_url = app_base_url.rstrip("/")
        self._clock = clock

    def available_actions(self, status: S, role: Role) -> list[ActionOption]:
        return [
            ActionOption(
                action=name,
                label=t.label,
                to_status=t.to_status,
                requires_reason=t.requires_reason,
            )
            for name, t in TRANSITIONS.items()
            if status in t.from_statuses and is_role_allowed(t, role)
        ]

    async def apply_action(
        self,
        item_id: str,
        action: str,
        actor_id: str,
        actor_role: Role,
        reason: str | None = None,
        completion: CompletionProof | None = None,
        channel: str = "web",
    ) -> S:
        transition = TRANSITIONS.get(action)
        if transition is None:
            raise ValidationError(f"Unknown action {action!r}")

        item = await asyncio.to_thread(self._items.get_item, item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")

        current = item.workflow_status
        if current not in transition.from_statuses:
            raise InvalidTransitionError(action, current)
        if not is_role_allowed(transition, actor_role):
            raise ForbiddenError(action, actor_role)
        if transition.requires_reason and not (reason and reason.strip()):
            raise ValidationError(f"Action {action!r} requires a reason")
        for guard in GUARD_RAILS.get(action, ()):
            message = guard(item)
            if message:
                raise ValidationError(message)

        now = self._clock()
        fields: dict = {}
        if action == "done":
            fields = {"completed_at": now, "completed_by": actor_id}
            if completion is not None:
                if completion.description:
                    fields["completion_description"] = completion.description
                if completion.attachment_url:
                    fields["completion_attachment_url"] = completion.attachment_url

        updated = await asyncio.to_thread(
            self._items.update_item_status, item_id, current, transition.to_status, **fields,
        )
        if not updated:
            # Someone else moved the item after we read it.
            latest = await asyncio.to_thread(self._items.get_item, item_id)
            raise InvalidTransitionError(action, latest.workflow_status if latest else current)

        await asyncio.to_thread(self._items.append_transition, TransitionLogEntry(
            item_id=item_id,
            old_status=current,
            new_status=transition.to_status,
            reason=reason,
            actor=actor_id,
            channel=channel,
            timestamp=now,
        ))
        logger.info("Item %s: %s -> %s by %s (%s)", item_id, current, transition.to_status, actor_id, action)

        if transition.to_status == S.FINISHED:
            await self._notify_finished(item)

        return transition.to_status

    def timeline(self, item_id: str, limit: int = 20) -> list[TransitionLogEntry]:
        return self._items.list_transitions(item_id, limit=limit)

    async def _notify_finished(self, item: Item) -> None:
        """Best-effort completion notice; never undoes the transition."""
        if self._dispatcher is None or not item.recipient_ids:
            return
        variables = {"item_title": item.title, "item_ref": item.ref_number or ""}
        payload = NotificationPayload(
            title=f"Completed: {item.title}",
            body=render_template(DEFAULT_COMPLETION_TEMPLATE, variables),
            priority=Priority.NORMAL,
            action_url=f"{self._app_base_url}/items/{item.id}" if self._app_base_url else None,
        )
        try:
            results = await self._dispatcher.dispatch_many(
                item.tenant_id, f"finish:{item.id}", item.recipient_ids,
                self._completion_channels, payload,
            )
        except Exception:
            logger.exception("Completion notice for item %s failed", item.id)
            return
        sent = sum(
            1 for outcomes in results.values() for o in outcomes.values() if o.status == NotificationStatus.SENT
        )
        logger.info("Completion notice for item %s: %d message(s) sent", item.id, sent)
