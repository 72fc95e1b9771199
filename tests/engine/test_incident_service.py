"""Tests for the IncidentLifecycleService against a real in-memory database."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from incidentflow.engine.audit_recorder import AuditRecorder
from incidentflow.engine.incident_service import IncidentChanges, IncidentLifecycleService
from incidentflow.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from incidentflow.models.incident import Incident, IncidentStatus, SeverityLevel
from incidentflow.models.incident_log import IncidentLog


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def service(session_factory, clock):
    return IncidentLifecycleService(session_factory, clock=clock)


async def _logs(factory, incident_id):
    async with factory() as session:
        rows = (await session.execute(
            select(IncidentLog).where(IncidentLog.incident_id == incident_id).order_by(IncidentLog.id)
        )).scalars().all()
    return list(rows)


async def _row(factory, incident_id):
    async with factory() as session:
        return (await session.execute(select(Incident).where(Incident.id == incident_id))).scalar_one()


async def _count(factory, model):
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


async def _create(service, requester, severity=SeverityLevel.MEDIUM, assigned_to=None):
    return await service.create_incident(
        requester, "Disk full", "db01 is out of space", severity, assigned_to=assigned_to
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreate:

    @pytest.mark.asyncio
    async def test_creates_open_incident_with_create_entry(self, service, session_factory, reporter, clock):
        incident = await _create(service, reporter, SeverityLevel.HIGH)

        assert incident.status is IncidentStatus.OPEN
        assert incident.created_by == reporter.user_id
        assert incident.created_at == clock.now
        assert incident.is_deleted is False
        assert incident.version == 1

        logs = await _logs(session_factory, incident.id)
        assert [log.action for log in logs] == ["Create"]
        assert logs[0].details == "Incident created with severity High."
        assert logs[0].performed_by_user_id == reporter.user_id

    @pytest.mark.asyncio
    async def test_create_with_assignee_mentions_assignment(self, service, session_factory, manager):
        assignee = uuid.uuid4()
        incident = await _create(service, manager, assigned_to=assignee)
        logs = await _logs(session_factory, incident.id)
        assert logs[0].details.endswith(f"and assignment to {assignee}.")

    @pytest.mark.asyncio
    async def test_create_with_assignee_without_assign_is_forbidden(self, service, session_factory, reporter):
        with pytest.raises(ForbiddenError):
            await _create(service, reporter, assigned_to=uuid.uuid4())
        assert await _count(session_factory, Incident) == 0
        assert await _count(session_factory, IncidentLog) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title,description", [("", "x"), ("   ", "x"), ("x", ""), ("x", "  ")])
    async def test_blank_fields_rejected(self, service, reporter, title, description):
        with pytest.raises(BadRequestError):
            await service.create_incident(reporter, title, description, SeverityLevel.LOW)

    @pytest.mark.asyncio
    async def test_missing_user_id_is_unauthorized(self, service, requester_for):
        anonymous = requester_for("User", user_id=None)
        with pytest.raises(UnauthorizedError):
            await _create(service, anonymous)

    @pytest.mark.asyncio
    async def test_fallback_role_cannot_create(self, service, requester_for):
        with pytest.raises(ForbiddenError):
            await _create(service, requester_for("Auditor"))


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

class TestUpdate:

    @pytest.mark.asyncio
    async def test_no_op_update_advances_updated_at_only(self, service, session_factory, reporter, clock):
        incident = await _create(service, reporter)
        clock.advance(minutes=5)

        updated = await service.update_incident(reporter, incident.id, IncidentChanges())

        assert updated.updated_at == clock.now
        assert [log.action for log in await _logs(session_factory, incident.id)] == ["Create"]

    @pytest.mark.asyncio
    async def test_three_changes_three_entries_in_order(self, service, session_factory, reporter, manager):
        incident = await _create(service, reporter)
        assignee = uuid.uuid4()

        await service.update_incident(manager, incident.id, IncidentChanges(
            assigned_to=assignee,
            severity=SeverityLevel.CRITICAL,
            status=IncidentStatus.IN_PROGRESS,
        ))

        logs = await _logs(session_factory, incident.id)
        assert [log.action for log in logs] == [
            "Create", "Status change", "Severity change", "Assignment change",
        ]
        assert logs[1].details == "Status changed from Open to InProgress."
        assert logs[2].details == "Severity changed from Medium to Critical."
        assert logs[3].details == f"Assignment changed from Unassigned to {assignee}."
        assert all(log.performed_by_user_id == manager.user_id for log in logs[1:])

    @pytest.mark.asyncio
    async def test_setting_same_value_writes_no_entry(self, service, session_factory, manager):
        incident = await _create(service, manager, SeverityLevel.HIGH)
        await service.update_incident(manager, incident.id, IncidentChanges(severity=SeverityLevel.HIGH))
        assert len(await _logs(session_factory, incident.id)) == 1

    @pytest.mark.asyncio
    async def test_user_status_only_on_own_incident(self, service, session_factory, reporter):
        incident = await _create(service, reporter)

        updated = await service.update_incident(
            reporter, incident.id, IncidentChanges(status=IncidentStatus.IN_PROGRESS)
        )

        assert updated.status is IncidentStatus.IN_PROGRESS
        logs = await _logs(session_factory, incident.id)
        assert [log.action for log in logs] == ["Create", "Status change"]

    @pytest.mark.asyncio
    async def test_assignee_may_change_status(self, service, manager, other_user):
        incident = await _create(service, manager, assigned_to=other_user.user_id)
        updated = await service.update_incident(
            other_user, incident.id, IncidentChanges(status=IncidentStatus.RESOLVED)
        )
        assert updated.status is IncidentStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_assignee_may_resolve_with_explicit_resolved_at(self, service, manager, other_user):
        incident = await _create(service, manager, assigned_to=other_user.user_id)
        updated = await service.update_incident(
            other_user,
            incident.id,
            IncidentChanges(status=IncidentStatus.RESOLVED, resolved_at=datetime(2024, 5, 15, 9, 30)),
        )
        assert updated.resolved_at == datetime(2024, 5, 15, 9, 30)

    @pytest.mark.asyncio
    async def test_user_editing_foreign_description_is_forbidden(
        self, service, session_factory, reporter, other_user
    ):
        incident = await _create(service, reporter)

        with pytest.raises(ForbiddenError):
            await service.update_incident(other_user, incident.id, IncidentChanges(description="hijack"))

        row = await _row(session_factory, incident.id)
        assert row.description == "db01 is out of space"
        assert len(await _logs(session_factory, incident.id)) == 1

    @pytest.mark.asyncio
    async def test_guard_uses_persisted_owner(self, service, reporter, other_user):
        """Owner fields come from the stored record, never from the request."""
        incident = await _create(service, reporter)
        with pytest.raises(ForbiddenError):
            await service.update_incident(
                other_user, incident.id, IncidentChanges(status=IncidentStatus.CLOSED)
            )

    @pytest.mark.asyncio
    async def test_blank_title_is_treated_as_absent(self, service, session_factory, reporter, other_user):
        incident = await _create(service, reporter)
        # Blank title is not an edit, so the status-only rule applies and other_user is no owner
        with pytest.raises(ForbiddenError):
            await service.update_incident(
                other_user, incident.id, IncidentChanges(title="  ", status=IncidentStatus.CLOSED)
            )
        updated = await service.update_incident(reporter, incident.id, IncidentChanges(title="   "))
        assert updated.title == "Disk full"

    @pytest.mark.asyncio
    async def test_entering_resolved_stamps_resolved_at(self, service, manager, clock):
        incident = await _create(service, manager)
        clock.advance(hours=2)
        updated = await service.update_incident(
            manager, incident.id, IncidentChanges(status=IncidentStatus.RESOLVED)
        )
        assert updated.resolved_at == clock.now

    @pytest.mark.asyncio
    async def test_explicit_resolved_at_wins_and_is_stored_naive_utc(self, service, manager):
        incident = await _create(service, manager)
        supplied = datetime(2024, 5, 14, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        updated = await service.update_incident(
            manager, incident.id, IncidentChanges(status=IncidentStatus.RESOLVED, resolved_at=supplied)
        )
        assert updated.resolved_at == datetime(2024, 5, 14, 8, 0)

    @pytest.mark.asyncio
    async def test_reopening_keeps_resolved_at(self, service, manager, clock):
        incident = await _create(service, manager)
        await service.update_incident(manager, incident.id, IncidentChanges(status=IncidentStatus.RESOLVED))
        resolved_at = clock.now
        clock.advance(hours=1)
        updated = await service.update_incident(manager, incident.id, IncidentChanges(status=IncidentStatus.OPEN))
        assert updated.resolved_at == resolved_at

    @pytest.mark.asyncio
    async def test_missing_incident_not_found(self, service, manager):
        with pytest.raises(NotFoundError):
            await service.update_incident(manager, uuid.uuid4(), IncidentChanges(title="x"))

    @pytest.mark.asyncio
    async def test_deleted_incident_not_found(self, service, admin, manager):
        incident = await _create(service, manager)
        await service.delete_incident(admin, incident.id)
        with pytest.raises(NotFoundError):
            await service.update_incident(manager, incident.id, IncidentChanges(title="x"))

    @pytest.mark.asyncio
    async def test_version_bumps_and_stale_version_conflicts(self, service, manager):
        incident = await _create(service, manager)
        updated = await service.update_incident(
            manager, incident.id, IncidentChanges(title="Renamed", expected_version=1)
        )
        assert updated.version == 2

        with pytest.raises(ConflictError):
            await service.update_incident(
                manager, incident.id, IncidentChanges(title="Again", expected_version=1)
            )

    @pytest.mark.asyncio
    async def test_audit_failure_rolls_back_update(self, session_factory, clock, manager):
        recorder = AuditRecorder(clock=clock)
        service = IncidentLifecycleService(session_factory, recorder=recorder, clock=clock)
        incident = await _create(service, manager)

        recorder.append = AsyncMock(side_effect=RuntimeError("audit store down"))
        with pytest.raises(RuntimeError):
            await service.update_incident(
                manager, incident.id, IncidentChanges(status=IncidentStatus.CLOSED)
            )

        row = await _row(session_factory, incident.id)
        assert row.status is IncidentStatus.OPEN
        assert row.version == 1


# ---------------------------------------------------------------------------
# Delete / restore
# ---------------------------------------------------------------------------

class TestDeleteRestore:

    @pytest.mark.asyncio
    async def test_delete_then_restore(self, service, session_factory, admin, manager, clock):
        incident = await _create(service, manager)

        assert await service.delete_incident(admin, incident.id) is True
        row = await _row(session_factory, incident.id)
        assert row.is_deleted is True
        assert row.deleted_at == clock.now

        assert await service.restore_incident(admin, incident.id) is True
        row = await _row(session_factory, incident.id)
        assert row.is_deleted is False
        assert row.deleted_at is None

        logs = await _logs(session_factory, incident.id)
        assert [log.action for log in logs] == ["Create", "Delete (soft)", "Restore"]
        assert logs[1].details == "Incident soft deleted."
        assert logs[2].details == "Incident restored from soft delete."

    @pytest.mark.asyncio
    async def test_repeated_delete_and_restore_are_no_ops(self, service, session_factory, admin, manager):
        incident = await _create(service, manager)

        assert await service.restore_incident(admin, incident.id) is False
        await service.delete_incident(admin, incident.id)
        assert await service.delete_incident(admin, incident.id) is False
        await service.restore_incident(admin, incident.id)
        assert await service.restore_incident(admin, incident.id) is False

        logs = await _logs(session_factory, incident.id)
        assert [log.action for log in logs] == ["Create", "Delete (soft)", "Restore"]

    @pytest.mark.asyncio
    async def test_delete_missing_is_no_op(self, service, admin):
        assert await service.delete_incident(admin, uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_restore_missing_is_no_op(self, service, session_factory, admin):
        assert await service.restore_incident(admin, uuid.uuid4()) is False
        async with session_factory() as session:
            count = (await session.execute(select(func.count(IncidentLog.id)))).scalar()
        assert count == 0

    @pytest.mark.asyncio
    async def test_non_admin_cannot_delete(self, service, session_factory, manager):
        incident = await _create(service, manager)
        with pytest.raises(ForbiddenError):
            await service.delete_incident(manager, incident.id)
        assert (await _row(session_factory, incident.id)).is_deleted is False

    @pytest.mark.asyncio
    async def test_get_hides_deleted(self, service, admin, manager):
        incident = await _create(service, manager)
        assert (await service.get_incident(manager, incident.id)).id == incident.id
        await service.delete_incident(admin, incident.id)
        with pytest.raises(NotFoundError):
            await service.get_incident(manager, incident.id)
