"""Audit Recorder: turns incident changes into append-only log entries."""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.incident import Incident, IncidentStatus, SeverityLevel
from ..models.incident_log import IncidentLog
from ..utils.clock import utcnow
from ..utils.logging import get_logger

logger = get_logger("engine.audit_recorder")

ACTION_CREATE = "Create"
ACTION_STATUS_CHANGE = "Status change"
ACTION_SEVERITY_CHANGE = "Severity change"
ACTION_ASSIGNMENT_CHANGE = "Assignment change"
ACTION_SOFT_DELETE = "Delete (soft)"
ACTION_RESTORE = "Restore"

UNASSIGNED_LABEL = "Unassigned"

# Diff order is fixed: status, then severity, then assignment
TRACKED_FIELDS = (
    ("status", ACTION_STATUS_CHANGE, "Status"),
    ("severity", ACTION_SEVERITY_CHANGE, "Severity"),
    ("assigned_to", ACTION_ASSIGNMENT_CHANGE, "Assignment"),
)


@dataclass(frozen=True)
class AuditSnapshot:
    """The audited fields of an incident at one point in time."""

    status: IncidentStatus
    severity: SeverityLevel
    assigned_to: Optional[uuid.UUID]

    @classmethod
    def of(cls, incident: Incident) -> "AuditSnapshot":
        return cls(
            status=incident.status,
            severity=incident.severity,
            assigned_to=incident.assigned_to,
        )


def describe_value(value) -> str:
    if value is None:
        return UNASSIGNED_LABEL
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


class AuditRecorder:
    """Builds IncidentLog entries and appends them to the caller's session.

    The recorder never commits. Entries are flushed inside the caller's
    transaction so a failed insert aborts the mutation it describes.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    def _entry(self, incident_id: uuid.UUID, action: str, details: str, performed_by: uuid.UUID) -> IncidentLog:
        return IncidentLog(
            incident_id=incident_id,
            action=action,
            details=details,
            performed_by_user_id=performed_by,
            created_at=self._clock(),
        )

    def diff(
        self,
        incident_id: uuid.UUID,
        before: AuditSnapshot,
        after: AuditSnapshot,
        performed_by: uuid.UUID,
    ) -> list[IncidentLog]:
        """One entry per tracked field whose value actually changed."""
        entries = []
        for field_name, action, label in TRACKED_FIELDS:
            old = getattr(before, field_name)
            new = getattr(after, field_name)
            if old == new:
                continue
            details = f"{label} changed from {describe_value(old)} to {describe_value(new)}."
            entries.append(self._entry(incident_id, action, details, performed_by))
        return entries

    def creation(self, incident: Incident, performed_by: uuid.UUID) -> IncidentLog:
        details = f"Incident created with severity {describe_value(incident.severity)}"
        if incident.assigned_to is not None:
            details += f" and assignment to {incident.assigned_to}"
        return self._entry(incident.id, ACTION_CREATE, details + ".", performed_by)

    def soft_deletion(self, incident: Incident, performed_by: uuid.UUID) -> IncidentLog:
        return self._entry(incident.id, ACTION_SOFT_DELETE, "Incident soft deleted.", performed_by)

    def restoration(self, incident: Incident, performed_by: uuid.UUID) -> IncidentLog:
        return self._entry(incident.id, ACTION_RESTORE, "Incident restored from soft delete.", performed_by)

    async def append(self, session: AsyncSession, entries: list[IncidentLog]) -> None:
        """Add entries in order and flush them within the open transaction."""
        if not entries:
            return
        for entry in entries:
            session.add(entry)
            # Flush one at a time so ids follow the status, severity, assignment order
            await session.flush()
        logger.debug(
            "audit_entries_appended",
            incident_id=str(entries[0].incident_id),
            actions=[e.action for e in entries],
        )
