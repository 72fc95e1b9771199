"""Query Engine: paginated, filtered incident lists and the dashboard summary.

Read-only. Every query goes through ``not_deleted()`` so soft-deleted
incidents never leak into a list, a count or a bucket.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, false, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth.guard import AccessContext, can_read, enforce
from ..auth.principal import Requester
from ..errors import NotFoundError
from ..models.incident import Incident, IncidentStatus, SeverityLevel
from ..models.incident_log import IncidentLog
from ..utils.clock import short_weekday, start_of_day, start_of_week, utcnow
from ..utils.logging import get_logger

logger = get_logger("engine.query_engine")

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50
# Keeps the row offset inside a signed 64-bit integer
MAX_PAGE = (2**63 - 1) // MAX_PAGE_SIZE
TREND_DAYS = 7


class IncidentListFilter(str, enum.Enum):
    TOTAL = "total"
    OPEN = "open"
    CRITICAL = "critical"
    RESOLVED_THIS_WEEK = "resolvedThisWeek"
    UNASSIGNED = "unassigned"
    ASSIGNED_TO_ME = "assignedToMe"

    @classmethod
    def parse(cls, raw: "str | IncidentListFilter | None") -> "IncidentListFilter":
        """Case-insensitive lookup; anything unrecognised means TOTAL."""
        if isinstance(raw, cls):
            return raw
        if not raw:
            return cls.TOTAL
        return _FILTERS_BY_NAME.get(raw.strip().lower(), cls.TOTAL)


_FILTERS_BY_NAME = {member.value.lower(): member for member in IncidentListFilter}


def normalize_paging(page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
    """Clamp page to [1, MAX_PAGE] and page size to [1, MAX_PAGE_SIZE]."""
    page = DEFAULT_PAGE if page is None else min(max(1, page), MAX_PAGE)
    page_size = DEFAULT_PAGE_SIZE if page_size is None else min(max(1, page_size), MAX_PAGE_SIZE)
    return page, page_size


def not_deleted():
    """The one predicate that hides soft-deleted incidents."""
    return Incident.is_deleted.is_(False)


def filter_clause(
    list_filter: IncidentListFilter,
    requester_id: Optional[uuid.UUID],
    now: datetime,
):
    """SQL condition for a named filter, or None for TOTAL."""
    if list_filter is IncidentListFilter.OPEN:
        return Incident.status == IncidentStatus.OPEN
    if list_filter is IncidentListFilter.CRITICAL:
        return Incident.severity == SeverityLevel.CRITICAL
    if list_filter is IncidentListFilter.RESOLVED_THIS_WEEK:
        return and_(Incident.resolved_at.is_not(None), Incident.resolved_at >= start_of_week(now))
    if list_filter is IncidentListFilter.UNASSIGNED:
        return Incident.assigned_to.is_(None)
    if list_filter is IncidentListFilter.ASSIGNED_TO_ME:
        if requester_id is None:
            return false()
        return Incident.assigned_to == requester_id
    return None


@dataclass
class IncidentPage:
    items: list[Incident]
    total_count: int
    page: int
    page_size: int


@dataclass
class CountBucket:
    label: str
    count: int


@dataclass
class DashboardSummary:
    total_incidents: int = 0
    open_incidents: int = 0
    critical_incidents: int = 0
    resolved_this_week: int = 0
    unassigned_incidents: int = 0
    assigned_to_me_incidents: int = 0
    severity: list[CountBucket] = field(default_factory=list)
    status: list[CountBucket] = field(default_factory=list)
    trend: list[CountBucket] = field(default_factory=list)


class IncidentQueryEngine:
    """Read path over incidents and their audit trail."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    def _authorize_read(requester: Requester, operation: str) -> None:
        enforce(
            can_read(AccessContext(permissions=requester.permissions)),
            operation,
            user_id=str(requester.user_id) if requester.user_id else None,
        )

    async def list_incidents(
        self,
        requester: Requester,
        page: Optional[int] = DEFAULT_PAGE,
        page_size: Optional[int] = DEFAULT_PAGE_SIZE,
        list_filter: "str | IncidentListFilter | None" = IncidentListFilter.TOTAL,
    ) -> IncidentPage:
        """One page of active incidents, newest first."""
        self._authorize_read(requester, "list_incidents")
        page, page_size = normalize_paging(page, page_size)
        parsed_filter = IncidentListFilter.parse(list_filter)

        conditions = [not_deleted()]
        clause = filter_clause(parsed_filter, requester.user_id, self._clock())
        if clause is not None:
            conditions.append(clause)

        async with self._session_factory() as session:
            total_count = (await session.execute(
                select(func.count(Incident.id)).where(*conditions)
            )).scalar() or 0

            rows = (await session.execute(
                select(Incident)
                .where(*conditions)
                .order_by(Incident.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )).scalars().all()

        return IncidentPage(items=list(rows), total_count=total_count, page=page, page_size=page_size)

    async def _count(self, session: AsyncSession, clause) -> int:
        query = select(func.count(Incident.id)).where(not_deleted())
        if clause is not None:
            query = query.where(clause)
        return (await session.execute(query)).scalar() or 0

    async def get_dashboard_summary(self, requester: Requester) -> DashboardSummary:
        """Headline counts, severity/status breakdowns and a seven-day trend."""
        self._authorize_read(requester, "dashboard_summary")
        now = self._clock()
        summary = DashboardSummary()

        async with self._session_factory() as session:
            summary.total_incidents = await self._count(session, None)
            summary.open_incidents = await self._count(
                session, filter_clause(IncidentListFilter.OPEN, None, now))
            summary.critical_incidents = await self._count(
                session, filter_clause(IncidentListFilter.CRITICAL, None, now))
            summary.resolved_this_week = await self._count(
                session, filter_clause(IncidentListFilter.RESOLVED_THIS_WEEK, None, now))
            summary.unassigned_incidents = await self._count(
                session, filter_clause(IncidentListFilter.UNASSIGNED, None, now))
            if requester.user_id is not None:
                summary.assigned_to_me_incidents = await self._count(
                    session, filter_clause(IncidentListFilter.ASSIGNED_TO_ME, requester.user_id, now))

            by_severity = dict((await session.execute(
                select(Incident.severity, func.count(Incident.id))
                .where(not_deleted())
                .group_by(Incident.severity)
            )).all())
            by_status = dict((await session.execute(
                select(Incident.status, func.count(Incident.id))
                .where(not_deleted())
                .group_by(Incident.status)
            )).all())

            today = start_of_day(now)
            window_start = today - timedelta(days=TREND_DAYS - 1)
            window_end = today + timedelta(days=1)
            created = (await session.execute(
                select(Incident.created_at).where(
                    not_deleted(),
                    Incident.created_at >= window_start,
                    Incident.created_at < window_end,
                )
            )).scalars().all()

        summary.severity = [CountBucket(s.value, by_severity.get(s, 0)) for s in SeverityLevel]
        summary.status = [CountBucket(s.value, by_status.get(s, 0)) for s in IncidentStatus]
        summary.trend = _trend_buckets(created, window_start)
        return summary

    async def get_incident_logs(self, requester: Requester, incident_id: uuid.UUID) -> list[IncidentLog]:
        """Audit timeline of an active incident, oldest first."""
        self._authorize_read(requester, "incident_logs")
        async with self._session_factory() as session:
            exists = (await session.execute(
                select(Incident.id).where(Incident.id == incident_id, not_deleted())
            )).scalar_one_or_none()
            if exists is None:
                raise NotFoundError("Incident not found")
            rows = (await session.execute(
                select(IncidentLog)
                .where(IncidentLog.incident_id == incident_id)
                .order_by(IncidentLog.id.asc())
            )).scalars().all()
        return list(rows)


def _trend_buckets(created_at_values: list[datetime], window_start: datetime) -> list[CountBucket]:
    days = [window_start + timedelta(days=offset) for offset in range(TREND_DAYS)]
    counts = {day: 0 for day in days}
    for created_at in created_at_values:
        day = start_of_day(created_at)
        if day in counts:
            counts[day] += 1
    return [CountBucket(short_weekday(day), counts[day]) for day in days]
