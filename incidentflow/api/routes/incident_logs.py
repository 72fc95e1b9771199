"""Administrative incident log routes: direct access to the audit table."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.guard import AccessContext, can_edit_log_entry, can_read_audit, enforce
from ...auth.principal import Requester
from ...dependencies import get_current_user, get_db
from ...models.incident import Incident
from ...models.incident_log import IncidentLog
from ...utils.clock import utcnow
from ...utils.logging import get_logger

logger = get_logger("api.incident_logs")

router = APIRouter(prefix="/incident-logs", tags=["incident-logs"])


# --- Request bodies ---

class CreateIncidentLogRequest(BaseModel):
    incident_id: uuid.UUID
    action: str = Field(min_length=1, max_length=50)
    details: str = Field(default="", max_length=5000)


class UpdateIncidentLogRequest(BaseModel):
    action: Optional[str] = Field(default=None, max_length=50)
    details: Optional[str] = Field(default=None, max_length=5000)


def log_to_dict(entry: IncidentLog) -> dict:
    return {
        "id": entry.id,
        "incident_id": str(entry.incident_id),
        "action": entry.action,
        "details": entry.details,
        "performed_by_user_id": str(entry.performed_by_user_id),
        "created_at": entry.created_at.isoformat(),
    }


# --- Helpers ---

def _authorize_audit_read(current_user: Requester, operation: str) -> None:
    enforce(can_read_audit(AccessContext(permissions=current_user.permissions)), operation)


async def _get_log_or_404(log_id: int, db: AsyncSession) -> IncidentLog:
    entry = (await db.execute(
        select(IncidentLog).where(IncidentLog.id == log_id)
    )).scalar_one_or_none()
    if entry is None:
        raise HTTPException(status_code=404, detail="Incident log entry not found")
    return entry


def _authorize_entry_edit(current_user: Requester, entry: IncidentLog, operation: str) -> None:
    user_id = current_user.require_user_id()
    ctx = AccessContext.for_record(current_user.permissions, user_id, entry.performed_by_user_id)
    enforce(can_edit_log_entry(ctx), operation, log_id=entry.id, user_id=str(user_id))


# --- Endpoints ---

@router.get("")
async def list_incident_logs(
    incident_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    """All log entries, optionally for one incident, in insertion order."""
    _authorize_audit_read(current_user, "list_incident_logs")
    query = select(IncidentLog).order_by(IncidentLog.id.asc()).limit(limit).offset(offset)
    if incident_id is not None:
        query = query.where(IncidentLog.incident_id == incident_id)
    rows = (await db.execute(query)).scalars().all()
    return [log_to_dict(e) for e in rows]


@router.get("/{log_id}")
async def get_incident_log(
    log_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    _authorize_audit_read(current_user, "get_incident_log")
    return log_to_dict(await _get_log_or_404(log_id, db))


@router.post("", status_code=201)
async def create_incident_log(
    body: CreateIncidentLogRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    """Record a manual entry. The requester is always the performer."""
    _authorize_audit_read(current_user, "create_incident_log")
    user_id = current_user.require_user_id()

    incident = (await db.execute(
        select(Incident.id).where(Incident.id == body.incident_id)
    )).scalar_one_or_none()
    if incident is None:
        raise HTTPException(status_code=404, detail="Incident not found")

    entry = IncidentLog(
        incident_id=body.incident_id,
        action=body.action.strip(),
        details=body.details,
        performed_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.add(entry)
    await db.commit()
    await db.refresh(entry)

    logger.info("incident_log_created", log_id=entry.id, incident_id=str(body.incident_id), action=entry.action)
    return log_to_dict(entry)


@router.put("/{log_id}", status_code=204)
async def update_incident_log(
    log_id: int,
    body: UpdateIncidentLogRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    entry = await _get_log_or_404(log_id, db)
    _authorize_entry_edit(current_user, entry, "update_incident_log")

    if body.action is not None and body.action.strip():
        entry.action = body.action.strip()
    if body.details is not None and body.details.strip():
        entry.details = body.details
    await db.commit()

    logger.info("incident_log_updated", log_id=log_id, performed_by=str(current_user.user_id))
    return Response(status_code=204)


@router.delete("/{log_id}", status_code=204)
async def delete_incident_log(
    log_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Requester = Depends(get_current_user),
):
    entry = await _get_log_or_404(log_id, db)
    _authorize_entry_edit(current_user, entry, "delete_incident_log")

    await db.delete(entry)
    await db.commit()

    logger.warning("incident_log_deleted", log_id=log_id, performed_by=str(current_user.user_id))
    return Response(status_code=204)
