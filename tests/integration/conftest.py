"""Integration test fixtures: in-memory app, async client, per-role auth headers."""

import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Force test config BEFORE any app imports
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-integration-tests"
os.environ["SEED_ENABLED"] = "false"

import incidentflow.database as db_mod
import incidentflow.dependencies as dep_mod
from incidentflow.auth.permissions import ROLE_ADMIN, ROLE_MANAGER, ROLE_USER
from incidentflow.models.user import User
from incidentflow.utils.security import create_access_token, hash_password


def _reset_singletons():
    """Reset all module-level singletons so each test starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod._config_instance = None
    dep_mod._incident_service = None
    dep_mod._query_engine = None


@pytest_asyncio.fixture
async def test_app():
    """Create test app with in-memory database (shared via StaticPool)."""
    _reset_singletons()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Inject into database module BEFORE app import
    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    dep_mod.get_app_config()

    from incidentflow.main import app
    from incidentflow.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield app

    await engine.dispose()
    _reset_singletons()


@pytest_asyncio.fixture
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def db_factory(test_app):
    return db_mod._session_factory


@pytest_asyncio.fixture
async def make_user(db_factory):
    """Insert a user and return it."""
    async def _make(role: str, username: str | None = None, password: str = "s3cret-pass"):
        username = username or f"{role.lower()}-{uuid.uuid4().hex[:8]}"
        user = User(
            id=uuid.uuid4(),
            username=username,
            email=f"{username}@example.com",
            full_name=username.title(),
            role=role,
            password_hash=hash_password(password),
        )
        async with db_factory() as session:
            session.add(user)
            await session.commit()
        return user
    return _make


@pytest.fixture
def headers_for(test_app):
    """Bearer headers for a stored user, with the claims the login route would issue."""
    from incidentflow.api.routes.auth import token_claims

    config = dep_mod.get_app_config()

    def _headers(user: User) -> dict:
        token = create_access_token(
            data=token_claims(user),
            secret_key=config.secret_key,
            algorithm=config.jwt_algorithm,
            expires_minutes=5,
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest_asyncio.fixture
async def admin_user(make_user):
    return await make_user(ROLE_ADMIN, username="root-admin")


@pytest_asyncio.fixture
async def manager_user(make_user):
    return await make_user(ROLE_MANAGER)


@pytest_asyncio.fixture
async def plain_user(make_user):
    return await make_user(ROLE_USER)


@pytest_asyncio.fixture
async def second_user(make_user):
    return await make_user(ROLE_USER)
