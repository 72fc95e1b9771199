"""Incident routes: lifecycle mutations, paged lists, dashboard and timeline."""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from ...auth.permissions import PERM_INCIDENTS_READ
from ...auth.principal import Requester
from ...auth.rbac import require_permission
from ...dependencies import get_current_user, get_incident_service, get_query_engine
from ...engine.incident_service import IncidentChanges, IncidentLifecycleService
from ...engine.query_engine import DashboardSummary, IncidentQueryEngine
from ...models.incident import Incident, IncidentStatus, SeverityLevel
from .incident_logs import log_to_dict

router = APIRouter(prefix="/incidents", tags=["incidents"])


# --- Request bodies ---

class CreateIncidentRequest(BaseModel):
    title: str = Field(max_length=255)
    description: str = Field(max_length=5000)
    severity: SeverityLevel
    assigned_to: Optional[uuid.UUID] = None


class UpdateIncidentRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    status: Optional[IncidentStatus] = None
    severity: Optional[SeverityLevel] = None
    assigned_to: Optional[uuid.UUID] = None
    resolved_at: Optional[datetime] = None
    version: Optional[int] = None


# --- Serializers ---

def incident_to_dict(incident: Incident) -> dict:
    return {
        "id": str(incident.id),
        "title": incident.title,
        "description": incident.description,
        "status": incident.status.value,
        "severity": incident.severity.value,
        "created_by": str(incident.created_by),
        "assigned_to": str(incident.assigned_to) if incident.assigned_to else None,
        "created_at": incident.created_at.isoformat(),
        "updated_at": incident.updated_at.isoformat(),
        "resolved_at": incident.resolved_at.isoformat() if incident.resolved_at else None,
        "version": incident.version,
    }


def _summary_to_dict(summary: DashboardSummary) -> dict:
    def buckets(items):
        return [{"label": b.label, "count": b.count} for b in items]

    return {
        "total_incidents": summary.total_incidents,
        "open_incidents": summary.open_incidents,
        "critical_incidents": summary.critical_incidents,
        "resolved_this_week": summary.resolved_this_week,
        "unassigned_incidents": summary.unassigned_incidents,
        "assigned_to_me_incidents": summary.assigned_to_me_incidents,
        "severity": buckets(summary.severity),
        "status": buckets(summary.status),
        "trend": buckets(summary.trend),
    }


# --- Endpoints ---

@router.get("")
async def list_incidents(
    page: Optional[int] = None,
    page_size: Optional[int] = None,
    page_size_alias: Optional[int] = Query(None, alias="pageSize"),
    list_filter: Optional[str] = Query(None, alias="filter"),
    current_user: Requester = Depends(get_current_user),
    engine: IncidentQueryEngine = Depends(get_query_engine),
):
    """List active incidents, newest first, with paging and a named filter."""
    result = await engine.list_incidents(
        current_user,
        page=page,
        page_size=page_size if page_size is not None else page_size_alias,
        list_filter=list_filter,
    )
    return {
        "items": [incident_to_dict(i) for i in result.items],
        "total_count": result.total_count,
        "page": result.page,
        "page_size": result.page_size,
    }


@router.get("/dashboard-summary")
async def get_dashboard_summary(
    current_user: Requester = Depends(get_current_user),
    engine: IncidentQueryEngine = Depends(get_query_engine),
):
    """Headline counts, severity/status breakdowns and the seven-day trend."""
    summary = await engine.get_dashboard_summary(current_user)
    return _summary_to_dict(summary)


@router.get("/{incident_id}")
async def get_incident(
    incident_id: uuid.UUID,
    current_user: Requester = Depends(get_current_user),
    service: IncidentLifecycleService = Depends(get_incident_service),
):
    incident = await service.get_incident(current_user, incident_id)
    return incident_to_dict(incident)


@router.get("/{incident_id}/logs")
async def get_incident_logs(
    incident_id: uuid.UUID,
    current_user: Requester = Depends(get_current_user),
    engine: IncidentQueryEngine = Depends(get_query_engine),
):
    """Audit timeline of one incident, oldest first."""
    entries = await engine.get_incident_logs(current_user, incident_id)
    return [log_to_dict(e) for e in entries]


@router.post("", status_code=201)
async def create_incident(
    body: CreateIncidentRequest,
    current_user: Requester = Depends(get_current_user),
    service: IncidentLifecycleService = Depends(get_incident_service),
):
    incident = await service.create_incident(
        current_user,
        title=body.title,
        description=body.description,
        severity=body.severity,
        assigned_to=body.assigned_to,
    )
    return incident_to_dict(incident)


@router.put("/{incident_id}")
async def update_incident(
    incident_id: uuid.UUID,
    body: UpdateIncidentRequest,
    current_user: Requester = Depends(require_permission(PERM_INCIDENTS_READ)),
    service: IncidentLifecycleService = Depends(get_incident_service),
):
    """Update an incident. Absent or null fields are left unchanged."""
    changes = IncidentChanges(
        title=body.title,
        description=body.description,
        status=body.status,
        severity=body.severity,
        assigned_to=body.assigned_to,
        resolved_at=body.resolved_at,
        expected_version=body.version,
    )
    incident = await service.update_incident(current_user, incident_id, changes)
    return incident_to_dict(incident)


@router.delete("/{incident_id}", status_code=204)
async def delete_incident(
    incident_id: uuid.UUID,
    current_user: Requester = Depends(get_current_user),
    service: IncidentLifecycleService = Depends(get_incident_service),
):
    """Soft delete. Deleting a missing or already deleted incident is a no-op."""
    await service.delete_incident(current_user, incident_id)
    return Response(status_code=204)


@router.post("/{incident_id}/restore", status_code=204)
async def restore_incident(
    incident_id: uuid.UUID,
    current_user: Requester = Depends(get_current_user),
    service: IncidentLifecycleService = Depends(get_incident_service),
):
    restored = await service.restore_incident(current_user, incident_id)
    if not restored:
        raise HTTPException(status_code=404, detail="No deleted incident to restore")
    return Response(status_code=204)
