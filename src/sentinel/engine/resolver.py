"""RecipientResolver: maps (employee, level) to the next person to notify."""

from __future__ import annotations

import logging

from sentinel.core.protocols import IDirectory

logger = logging.getLogger(__name__)

HR_LEVEL = 4

# Level -> OrganizationalEdge attribute for the hierarchy levels.
HIERARCHY_FIELDS = {
    1: "supervisor_id",
    2: "manager_id",
    3: "director_id",
}


class RecipientResolver:
    """Resolve escalation recipients from the organizational hierarchy.

    Levels 1-3 follow the employee's reporting lines. Level 4 picks an active
    HR contact for the tenant: the designated primary when there is one,
    otherwise the contact with the lowest id, so repeated sweeps always pick
    the same person.
    """

    def __init__(self, directory: IDirectory) -> None:
        self._directory = directory

    def resolve_next(self, tenant_id: str, employee_id: str, level: int) -> str | None:
        if level == HR_LEVEL:
            return self._resolve_hr(tenant_id)

        field = HIERARCHY_FIELDS.get(level)
        if field is None:
            return None

        edge = self._directory.get_edge(tenant_id, employee_id)
        if edge is None:
            logger.info("No hierarchy for employee %s in tenant %s", employee_id, tenant_id)
            return None
        return getattr(edge, field) or None

    def _resolve_hr(self, tenant_id: str) -> str | None:
        contacts = self._directory.list_hr_contacts(tenant_id)
        if not contacts:
            logger.info("No active HR contact for tenant %s", tenant_id)
            return None
        chosen = min(contacts, key=lambda c: (not c.is_primary_hr, c.id))
        return chosen.id
