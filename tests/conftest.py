"""Shared test fixtures."""

import uuid
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from incidentflow.auth.permissions import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_USER,
    permissions_for_role,
)
from incidentflow.auth.principal import Requester
from incidentflow.models.base import Base


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_requester(role: str | None, user_id: uuid.UUID | None = None) -> Requester:
    return Requester(
        user_id=user_id if user_id is not None else uuid.uuid4(),
        permissions=permissions_for_role(role),
        role=role,
        username=(role or "anon").lower(),
    )


@pytest.fixture
def clock():
    # Wednesday
    return FrozenClock(datetime(2024, 5, 15, 12, 0, 0))


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite shared through StaticPool, fresh per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def admin():
    return make_requester(ROLE_ADMIN)


@pytest.fixture
def manager():
    return make_requester(ROLE_MANAGER)


@pytest.fixture
def reporter():
    """A plain User-role requester."""
    return make_requester(ROLE_USER)


@pytest.fixture
def other_user():
    return make_requester(ROLE_USER)


@pytest.fixture
def requester_for():
    """Factory: ``requester_for("User")`` or ``requester_for("User", user_id=None)``."""
    def _make(role, **kwargs):
        if "user_id" in kwargs and kwargs["user_id"] is None:
            return Requester(user_id=None, permissions=permissions_for_role(role), role=role)
        return make_requester(role, **kwargs)
    return _make
