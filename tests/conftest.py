"""Pytest configuration and fixtures for Rosterly tests with a SQLite database."""

import uuid
from collections.abc import AsyncGenerator, Generator
from datetime import date, timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.database import get_db
from app.importer import WizardOptions
from app.main import app
from app.models import Base, Branch, ClassTemplate, Course, Location, Teacher, Tenant
from app.services import import_service
from app.services.import_service import ImportService
from app.services.occurrence_service import OccurrenceService
from app.utils.tenant_context import clear_all_context, set_tenant_id

from tests.fakes import (
    FakeEnrollmentGateway,
    FakeLookupSource,
    FakeOccurrenceRoster,
    FakeSearchableLookupSource,
    InMemoryRecordStore,
)

# No pauses between import batches in tests
FAST_OPTIONS = WizardOptions(batch_size=2, batch_delay=0, timeout=5.0)


@pytest.fixture
def tenant_id() -> Generator[uuid.UUID, None, None]:
    """Set the tenant context for the test (async fixtures and tests inherit it)."""
    tid = uuid.uuid4()
    set_tenant_id(tid)
    yield tid
    clear_all_context()


# =============================================================================
# In-memory capabilities
# =============================================================================


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def lookups() -> dict:
    """Reference lists for every lookup source the profiles use."""
    return {
        "branches": FakeLookupSource([
            {"id": "b-north", "name": "North", "is_active": True},
            {"id": "b-south", "name": "South", "is_active": True},
        ]),
        "locations": FakeLookupSource([
            {"id": "l-north-1", "name": "Hall 1", "branch_id": "b-north"},
            {"id": "l-south-1", "name": "Hall 1", "branch_id": "b-south"},
            {"id": "l-south-2", "name": "Studio", "branch_id": "b-south"},
        ]),
        "teachers": FakeLookupSource([
            {"id": "t-dana", "first_name": "Dana", "last_name": "Levi"},
            {"id": "t-omer", "first_name": "Omer", "last_name": "Cohen"},
        ]),
        "courses": FakeLookupSource([
            {"id": "c-intro-a", "name": "Intro A", "is_active": True},
            {"id": "c-advanced", "name": "Advanced Ballet", "is_active": True},
            {"id": "c-old", "name": "Intro Old", "is_active": False},
        ]),
        "templates": FakeLookupSource([
            {"id": "tpl-ballet", "name": "Ballet"},
            {"id": "tpl-jazz", "name": "Jazz"},
        ]),
        "occurrences": FakeSearchableLookupSource(
            [
                {"id": "o-ballet-1", "display_name": "Ballet - 01/11/2026 17:00"},
                {"id": "o-jazz-1", "display_name": "Jazz - 02/11/2026 18:00"},
            ],
            name_field="display_name",
        ),
    }


@pytest.fixture
def gateway() -> FakeEnrollmentGateway:
    return FakeEnrollmentGateway()


@pytest.fixture
def roster() -> FakeOccurrenceRoster:
    return FakeOccurrenceRoster()


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite engine with working savepoints."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rosterly.db'}")

    @event.listens_for(test_engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory, tenant_id) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db: AsyncSession, tenant_id) -> SimpleNamespace:
    """A tenant with one branch, location, teacher, template, course and three occurrences."""
    today = date.today()

    tenant = Tenant(id=tenant_id, name="Studio One", slug=f"studio-{tenant_id.hex[:8]}")
    db.add(tenant)
    await db.flush()

    branch = Branch(tenant_id=tenant_id, name="North")
    teacher = Teacher(tenant_id=tenant_id, first_name="Dana", last_name="Levi")
    db.add_all([branch, teacher])
    await db.flush()

    location = Location(tenant_id=tenant_id, name="Hall 1", branch_id=branch.id)
    db.add(location)
    await db.flush()

    template = ClassTemplate(
        tenant_id=tenant_id,
        name="Ballet",
        teacher_id=teacher.id,
        branch_id=branch.id,
        location_id=location.id,
        day_of_week=0,
        start_time="17:00",
        duration=45,
    )
    db.add(template)
    await db.flush()

    course = Course(
        tenant_id=tenant_id,
        name="Intro A",
        start_date=today - timedelta(days=30),
        end_date=today + timedelta(days=300),
        price=120,
    )
    course.templates = [template]
    db.add(course)

    occurrences = [
        await OccurrenceService().create_occurrence(db, template, today + timedelta(days=offset))
        for offset in (-7, 7, 14)
    ]
    await db.commit()

    return SimpleNamespace(
        tenant=tenant,
        branch=branch,
        location=location,
        teacher=teacher,
        template=template,
        course=course,
        past_occurrence=occurrences[0],
        future_occurrences=occurrences[1:],
    )


# =============================================================================
# API
# =============================================================================


@pytest_asyncio.fixture
async def client(session_factory, seed, tenant_id, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client bound to the test database and tenant."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    monkeypatch.setattr(import_service, "_import_service", ImportService(options=FAST_OPTIONS))
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Tenant-ID": str(tenant_id)},
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
