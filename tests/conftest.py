"""
conftest.py — Shared Test Fixtures for the condo assistance core

Provides an in-memory SQLite database, FastAPI TestClient with admin auth
overridden, and factory fixtures for the core records (User, Supplier,
Building, InterventionType, Assistance, AccessCode).

Business Rules:
- All tests run against an isolated in-memory DB (no prod data risk)
- Admin auth is overridden so tests don't need the identity provider
- Suppliers authenticate with real access codes, exactly as in production
- Each test function gets a fresh DB (tables created and dropped)

Called by: all test files via pytest autodiscovery
Depends on: app.models (Base), app.database (get_db), app.dependencies
"""

import os

os.environ["TESTING"] = "1"  # Must be set before importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import (
    AccessCode,
    Assistance,
    Base,
    Building,
    InterventionType,
    Supplier,
    User,
)

# ── In-memory SQLite engine ──────────────────────────────────────────

TEST_DB_URL = "sqlite://"  # in-memory, fresh per session

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default, turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def now() -> datetime:
    """Fixed clock for service calls that take now=."""
    return NOW


@pytest.fixture()
def admin_user(db_session: Session) -> User:
    """An admin-role user for privileged operations."""
    user = User(
        email="gestao@condo.test",
        name="Test Admin",
        role="admin",
        external_id="test-external-admin",
        created_at=NOW,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def supplier(db_session: Session) -> Supplier:
    """An active plumbing supplier."""
    s = Supplier(
        name="Canalizações Silva",
        email="silva@fornecedor.test",
        phone="+351 910 000 001",
        specialization="Canalização",
        is_active=True,
        created_at=NOW,
    )
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture()
def other_supplier(db_session: Session) -> Supplier:
    s = Supplier(name="Eletro Norte", email="norte@fornecedor.test", is_active=True, created_at=NOW)
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture()
def inactive_supplier(db_session: Session) -> Supplier:
    s = Supplier(name="Obras Paradas", email="paradas@fornecedor.test", is_active=False, created_at=NOW)
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture()
def building(db_session: Session) -> Building:
    b = Building(code="B001", name="Edifício Aurora", address="Rua das Flores 10, Porto", created_at=NOW)
    db_session.add(b)
    db_session.commit()
    db_session.refresh(b)
    return b


@pytest.fixture()
def intervention_type(db_session: Session) -> InterventionType:
    t = InterventionType(name="Fuga de água", category="Canalização", created_at=NOW)
    db_session.add(t)
    db_session.commit()
    db_session.refresh(t)
    return t


@pytest.fixture()
def make_assistance(db_session: Session, building: Building, intervention_type: InterventionType, supplier: Supplier):
    """Factory: an assistance assigned to `supplier` in any starting status."""
    counter = {"n": 0}

    def _make(**overrides) -> Assistance:
        counter["n"] += 1
        fields = dict(
            assistance_number=counter["n"],
            title=f"Fuga na garagem #{counter['n']}",
            building_id=building.id,
            intervention_type_id=intervention_type.id,
            assigned_supplier_id=supplier.id,
            priority="normal",
            status="pending",
            response_deadline=NOW + timedelta(hours=72),
            created_at=NOW + timedelta(seconds=counter["n"]),
            updated_at=NOW,
        )
        fields.update(overrides)
        a = Assistance(**fields)
        db_session.add(a)
        db_session.commit()
        db_session.refresh(a)
        return a

    return _make


@pytest.fixture()
def assistance(make_assistance) -> Assistance:
    """A pending assistance assigned to `supplier`."""
    return make_assistance()


@pytest.fixture()
def make_code(db_session: Session, supplier: Supplier):
    """Factory: an access code, live for 30 days from both the fixed and the real clock."""
    counter = {"n": 0}

    def _make(**overrides) -> AccessCode:
        counter["n"] += 1
        fields = dict(
            supplier_id=supplier.id,
            code=f"TESTCD{counter['n']:02d}",
            expires_at=max(NOW, datetime.now(timezone.utc)) + timedelta(days=30),
            created_at=NOW,
        )
        fields.update(overrides)
        c = AccessCode(**fields)
        db_session.add(c)
        db_session.commit()
        db_session.refresh(c)
        return c

    return _make


@pytest.fixture()
def access_code(make_code, assistance: Assistance) -> AccessCode:
    """A live code for `supplier`, bound to `assistance`."""
    return make_code(assistance_id=assistance.id)


@pytest.fixture()
def client(db_session: Session, admin_user: User) -> TestClient:
    """FastAPI TestClient with admin auth overridden to return admin_user.

    Overrides get_db to use the test session. Portal routes are not
    overridden: they authenticate with the access code in the request.
    """
    from app.database import get_db
    from app.dependencies import require_admin, require_user
    from app.main import app

    def _override_db():
        yield db_session

    def _override_user():
        return admin_user

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[require_user] = _override_user
    app.dependency_overrides[require_admin] = _override_user

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def anon_client(db_session: Session) -> TestClient:
    """TestClient with only the DB overridden (no admin session)."""
    from app.database import get_db
    from app.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
