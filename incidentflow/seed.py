"""Startup seed: default admin account and configured sample incidents."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth.permissions import ROLE_ADMIN
from .config import IncidentFlowConfig, SeedIncident
from .engine.audit_recorder import AuditRecorder
from .models.incident import Incident, IncidentStatus
from .models.user import User
from .utils.clock import utcnow
from .utils.logging import get_logger
from .utils.security import hash_password

logger = get_logger("seed")


def unique_seed_items(items: list[SeedIncident]) -> list[SeedIncident]:
    """Drop blank titles and duplicates by (title, description, severity), keeping the first."""
    seen = set()
    unique = []
    for item in items:
        if not item.title.strip():
            continue
        key = (item.title.strip(), item.description.strip(), item.severity)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


async def seed_admin_user(session: AsyncSession, config: IncidentFlowConfig) -> bool:
    """Create the default Admin account unless one with the seed email exists."""
    existing = (await session.execute(
        select(User.id).where(func.lower(User.email) == config.seed_admin_email.lower())
    )).first()
    if existing is not None:
        logger.info("seed_admin_exists", email=config.seed_admin_email)
        return False

    session.add(User(
        id=uuid.uuid4(),
        username=config.seed_admin_username,
        email=config.seed_admin_email,
        full_name="System Administrator",
        role=ROLE_ADMIN,
        password_hash=hash_password(config.seed_admin_password),
        created_at=utcnow(),
    ))
    await session.commit()
    logger.info("seed_admin_created", email=config.seed_admin_email)
    return True


async def seed_incidents(session: AsyncSession, config: IncidentFlowConfig) -> int:
    """Insert the configured incidents, only into an empty table."""
    has_any = (await session.execute(select(Incident.id).limit(1))).first()
    if has_any is not None:
        logger.info("seed_incidents_skipped", reason="incidents_exist")
        return 0

    items = unique_seed_items(config.seed_incidents)
    if not items:
        logger.info("seed_incidents_skipped", reason="no_items")
        return 0

    recorder = AuditRecorder()
    now = utcnow()
    incidents = []
    for item in items:
        incident = Incident(
            id=uuid.uuid4(),
            title=item.title.strip(),
            description=item.description.strip(),
            status=IncidentStatus.OPEN,
            severity=item.severity,
            created_by=config.seed_user_id,
            created_at=now,
            updated_at=now,
            is_deleted=False,
        )
        session.add(incident)
        incidents.append(incident)
    await session.flush()
    await recorder.append(session, [recorder.creation(i, config.seed_user_id) for i in incidents])
    await session.commit()

    logger.info("seed_incidents_created", count=len(incidents))
    return len(incidents)


async def run_startup_seed(factory: async_sessionmaker[AsyncSession], config: IncidentFlowConfig) -> None:
    if not config.seed_enabled:
        logger.info("seed_disabled")
        return
    async with factory() as session:
        await seed_admin_user(session, config)
        await seed_incidents(session, config)
