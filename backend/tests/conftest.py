"""
Shared fixtures for the ledger tests.

Each test gets its own in-memory SQLite database (aiosqlite) with the full
schema created from the ORM metadata. API tests run the FastAPI app over
httpx's ASGI transport with authentication and the database session
overridden.
"""

import os

# Settings are cached on first import, so the test environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
os.environ["OIDC_SIGNING_KEY"] = "test-signing-key"
os.environ["OIDC_ALGORITHMS"] = "HS256"
os.environ["OIDC_ISSUER"] = ""
os.environ["OIDC_AUDIENCE"] = ""
os.environ["BANK_FIO_TOKEN"] = ""
os.environ["BANK_IBAN"] = ""
os.environ["EMAIL_API_KEY"] = ""
os.environ["SENTRY_DSN"] = ""

from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from config import get_settings
from database import Base, get_db
from database.models import (
    MemberDB, MembershipLevelDB, ProjectDB, ProjectIdentifierDB, MemberState
)
from middleware.auth import (
    AuthPrincipal, require_admin, get_admin_member, get_current_principal, get_current_member
)


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine):
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


# ==================== FACTORIES ====================

@pytest_asyncio.fixture
async def level(db):
    level = MembershipLevelDB(id=1, name="Regular", amount=Decimal("600"), active=True)
    db.add(level)
    await db.commit()
    return level


@pytest.fixture
def make_member(db, level):
    counter = {"n": 0}

    async def _make(
        payments_id="1001",
        state=MemberState.ACCEPTED.value,
        email=None,
        level_actual_amount=Decimal("0"),
        **kwargs,
    ) -> MemberDB:
        counter["n"] += 1
        member = MemberDB(
            email=email or f"member{counter['n']}@example.org",
            username=f"member{counter['n']}",
            level_id=level.id,
            level_actual_amount=level_actual_amount,
            payments_id=payments_id,
            state=state,
            **kwargs,
        )
        db.add(member)
        await db.commit()
        return member

    return _make


@pytest_asyncio.fixture
async def admin(make_member):
    return await make_member(
        payments_id=None,
        email="admin@example.org",
        external_id="admin-subject",
        is_council=True,
    )


@pytest.fixture
def make_project(db):
    async def _make(name="Hackerspace roof", identifiers=("9001",)) -> ProjectDB:
        project = ProjectDB(name=name, payments_id=identifiers[0])
        for i, vs in enumerate(identifiers):
            project.identifiers.append(
                ProjectIdentifierDB(vs=vs, note="primary" if i == 0 else "")
            )
        db.add(project)
        await db.commit()
        return project

    return _make


# ==================== API ====================

@pytest.fixture
def admin_principal():
    return AuthPrincipal(
        subject="admin-subject",
        email="admin@example.org",
        username="admin",
        roles=[get_settings().ADMIN_ROLE],
    )


@pytest_asyncio.fixture
async def api_client(db, admin, admin_principal):
    from server import app

    async def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_principal] = lambda: admin_principal
    app.dependency_overrides[require_admin] = lambda: admin_principal
    app.dependency_overrides[get_admin_member] = lambda: admin
    app.dependency_overrides[get_current_member] = lambda: admin

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
