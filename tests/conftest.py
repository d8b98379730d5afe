"""
Pytest configuration and fixtures for tenant-authz tests.

Every test gets its own SQLite file (foreign keys on) and an InMemoryCache.
"""
import os
import tempfile

import pytest
import structlog

# Set test environment before importing tenant_authz modules
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.gettempdir()}/tenant_authz_default.db"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ.pop("SENTRY_DSN", None)

from tenant_authz.database import build_engine, build_sessionmaker  # noqa: E402
from tenant_authz.models import Base, Organisation, User  # noqa: E402
from tenant_authz.services.authorization_service import AuthorizationService  # noqa: E402
from tenant_authz.services.cache import InMemoryCache  # noqa: E402


@pytest.fixture(autouse=True, scope="session")
def uncached_loggers():
    # Loggers must follow sys.stdout while capture streams come and go
    structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
async def engine(tmp_path):
    """Fresh database with every table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'authz.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest.fixture
def authz(db, cache) -> AuthorizationService:
    return AuthorizationService(db, cache)


@pytest.fixture
async def seeded(authz) -> AuthorizationService:
    """AuthorizationService over a database holding the catalog and system templates."""
    await authz.registry.sync_catalog()
    await authz.templates.sync_system_templates()
    return authz


@pytest.fixture
def make_org(db):
    async def factory(name: str = "Acme Corp", owner: User | None = None) -> Organisation:
        org = Organisation(name=name, owner_id=owner.id if owner else None)
        db.add(org)
        await db.commit()
        return org
    return factory


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def factory(org: Organisation | None = None, name: str | None = None) -> User:
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            name=name or f"User {counter['n']}",
            organisation_id=org.id if org else None,
        )
        db.add(user)
        await db.commit()
        return user
    return factory


@pytest.fixture
async def org(make_org) -> Organisation:
    return await make_org()


@pytest.fixture
async def other_org(make_org) -> Organisation:
    return await make_org("Beta Inc")
