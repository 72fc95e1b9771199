"""Incident Lifecycle Service: guarded, audited incident mutations.

Each mutation is one transaction: load the persisted record, ask the guard,
apply the change, append the audit entries. If any step raises, nothing is
committed.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..auth.guard import (
    AccessContext,
    ChangeShape,
    can_create,
    can_delete,
    can_read,
    can_restore,
    can_update,
    enforce,
)
from ..auth.principal import Requester
from ..errors import BadRequestError, ConflictError, NotFoundError
from ..models.incident import Incident, IncidentStatus, SeverityLevel
from ..utils.clock import as_naive_utc, utcnow
from ..utils.logging import get_logger
from .audit_recorder import AuditRecorder, AuditSnapshot
from .query_engine import not_deleted

logger = get_logger("engine.incident_service")


def _has_text(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


@dataclass
class IncidentChanges:
    """Fields an update request may carry. ``None`` means "leave as is"."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[IncidentStatus] = None
    severity: Optional[SeverityLevel] = None
    assigned_to: Optional[uuid.UUID] = None
    resolved_at: Optional[datetime] = None
    expected_version: Optional[int] = None

    def shape(self) -> ChangeShape:
        return ChangeShape(
            title=_has_text(self.title),
            description=_has_text(self.description),
            status=self.status is not None,
            severity=self.severity is not None,
            assignment=self.assigned_to is not None,
        )


class IncidentLifecycleService:
    """Create, update, soft-delete and restore incidents."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        recorder: AuditRecorder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._recorder = recorder or AuditRecorder(clock=clock)

    @staticmethod
    async def _load(
        session: AsyncSession,
        incident_id: uuid.UUID,
        include_deleted: bool = False,
        for_update: bool = False,
    ) -> Optional[Incident]:
        query = select(Incident).where(Incident.id == incident_id)
        if not include_deleted:
            query = query.where(not_deleted())
        if for_update:
            query = query.with_for_update()
        return (await session.execute(query)).scalar_one_or_none()

    async def get_incident(self, requester: Requester, incident_id: uuid.UUID) -> Incident:
        enforce(can_read(AccessContext(permissions=requester.permissions)), "get_incident")
        async with self._session_factory() as session:
            incident = await self._load(session, incident_id)
        if incident is None:
            raise NotFoundError("Incident not found")
        return incident

    async def create_incident(
        self,
        requester: Requester,
        title: str,
        description: str,
        severity: SeverityLevel,
        assigned_to: Optional[uuid.UUID] = None,
    ) -> Incident:
        """Create an Open incident and its "Create" log entry."""
        user_id = requester.require_user_id()
        if not _has_text(title):
            raise BadRequestError("Title is required.")
        if not _has_text(description):
            raise BadRequestError("Description is required.")

        enforce(
            can_create(AccessContext(permissions=requester.permissions), assigned_to is not None),
            "create_incident",
            user_id=str(user_id),
        )

        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                incident = Incident(
                    id=uuid.uuid4(),
                    title=title.strip(),
                    description=description.strip(),
                    status=IncidentStatus.OPEN,
                    severity=severity,
                    created_by=user_id,
                    assigned_to=assigned_to,
                    created_at=now,
                    updated_at=now,
                    is_deleted=False,
                )
                session.add(incident)
                await session.flush()
                await self._recorder.append(session, [self._recorder.creation(incident, user_id)])

        logger.info(
            "incident_created",
            id=str(incident.id),
            severity=incident.severity.value,
            assigned_to=str(assigned_to) if assigned_to else None,
            created_by=str(user_id),
        )
        return incident

    def _apply(self, incident: Incident, changes: IncidentChanges, now: datetime) -> None:
        if _has_text(changes.title):
            incident.title = changes.title.strip()
        if _has_text(changes.description):
            incident.description = changes.description.strip()

        if changes.status is not None:
            entering_resolved = (
                changes.status is IncidentStatus.RESOLVED
                and incident.status is not IncidentStatus.RESOLVED
            )
            incident.status = changes.status
            if entering_resolved and changes.resolved_at is None:
                incident.resolved_at = now

        if changes.severity is not None:
            incident.severity = changes.severity
        if changes.assigned_to is not None:
            incident.assigned_to = changes.assigned_to
        if changes.resolved_at is not None:
            incident.resolved_at = as_naive_utc(changes.resolved_at)

        incident.updated_at = now

    async def update_incident(
        self,
        requester: Requester,
        incident_id: uuid.UUID,
        changes: IncidentChanges,
    ) -> Incident:
        """Apply a guarded update and log each changed status/severity/assignment."""
        user_id = requester.require_user_id()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    incident = await self._load(session, incident_id, for_update=True)
                    if incident is None:
                        raise NotFoundError("Incident not found")
                    if changes.expected_version is not None and changes.expected_version != incident.version:
                        raise ConflictError(
                            f"Incident was modified (version {incident.version}, "
                            f"expected {changes.expected_version})"
                        )

                    ctx = AccessContext.for_record(
                        requester.permissions, user_id, incident.created_by, incident.assigned_to
                    )
                    enforce(
                        can_update(ctx, changes.shape()),
                        "update_incident",
                        incident_id=str(incident_id),
                        user_id=str(user_id),
                    )

                    before = AuditSnapshot.of(incident)
                    self._apply(incident, changes, self._clock())
                    entries = self._recorder.diff(
                        incident.id, before, AuditSnapshot.of(incident), user_id
                    )
                    await session.flush()
                    await self._recorder.append(session, entries)
        except StaleDataError as e:
            logger.warning("incident_update_conflict", id=str(incident_id), error=str(e))
            raise ConflictError("Incident was modified by another request") from e

        logger.info(
            "incident_updated",
            id=str(incident_id),
            changed=[entry.action for entry in entries],
            version=incident.version,
            performed_by=str(user_id),
        )
        return incident

    async def delete_incident(self, requester: Requester, incident_id: uuid.UUID) -> bool:
        """Soft delete. Returns False when the incident is missing or already deleted."""
        user_id = requester.require_user_id()
        enforce(
            can_delete(AccessContext(permissions=requester.permissions)),
            "delete_incident",
            incident_id=str(incident_id),
            user_id=str(user_id),
        )

        async with self._session_factory() as session:
            async with session.begin():
                incident = await self._load(session, incident_id, include_deleted=True, for_update=True)
                if incident is None or incident.is_deleted:
                    logger.debug("incident_delete_noop", id=str(incident_id))
                    return False

                now = self._clock()
                incident.is_deleted = True
                incident.deleted_at = now
                incident.updated_at = now
                await session.flush()
                await self._recorder.append(session, [self._recorder.soft_deletion(incident, user_id)])

        logger.info("incident_soft_deleted", id=str(incident_id), performed_by=str(user_id))
        return True

    async def restore_incident(self, requester: Requester, incident_id: uuid.UUID) -> bool:
        """Undo a soft delete. Returns False when there was nothing to restore."""
        user_id = requester.require_user_id()
        enforce(
            can_restore(AccessContext(permissions=requester.permissions)),
            "restore_incident",
            incident_id=str(incident_id),
            user_id=str(user_id),
        )

        async with self._session_factory() as session:
            async with session.begin():
                incident = await self._load(session, incident_id, include_deleted=True, for_update=True)
                if incident is None or not incident.is_deleted:
                    logger.debug("incident_restore_noop", id=str(incident_id))
                    return False

                incident.is_deleted = False
                incident.deleted_at = None
                incident.updated_at = self._clock()
                await session.flush()
                await self._recorder.append(session, [self._recorder.restoration(incident, user_id)])

        logger.info("incident_restored", id=str(incident_id), performed_by=str(user_id))
        return True
