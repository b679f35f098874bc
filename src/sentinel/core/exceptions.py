"""Sentinel exception hierarchy."""

from __future__ import annotations


class SentinelError(Exception):
    """Base exception for all Sentinel errors."""


class ValidationError(SentinelError):
    """Bad transition input. Nothing was written."""


class ForbiddenError(SentinelError):
    """Actor role is not allowed to perform the action."""

    def __init__(self, action: str, role: str) -> None:
        self.action = action
        self.role = str(role)
        super().__init__(f"Role '{role}' is not allowed to perform '{action}'")


class InvalidTransitionError(SentinelError):
    """Current status does not permit the action, or changed under the caller.

    Safe to retry after refetching the item.
    """

    def __init__(self, action: str, status: str) -> None:
        self.action = action
        self.status = str(status)
        super().__init__(f"Cannot perform '{action}' from state '{status}'")


class NotFoundError(SentinelError):
    """Requested row does not exist."""


class NoRecipientError(SentinelError):
    """Nobody to hand the chain to at a level. Terminal for the chain."""

    def __init__(self, tenant_id: str, employee_id: str, level: int) -> None:
        self.tenant_id = tenant_id
        self.employee_id = employee_id
        self.level = level
        super().__init__(f"No recipient at level {level} for employee {employee_id}")


class ChannelSendError(SentinelError):
    """A single channel send failed."""

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(f"{channel} send failed: {message}")


class StoreError(SentinelError):
    """Row-store operation failed."""


class CacheError(SentinelError):
    """Redis cache operation failed."""
