"""Pytest configuration and fixtures for testing."""
import os

# Point the app at SQLite before anything reads settings
os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import pytest
from fastapi.testclient import TestClient

from gearguard.core.auth import create_access_token
from gearguard.core.config import get_settings
from gearguard.main import app
from gearguard.db.session import Base, get_db
from gearguard.models.models import (
    Category,
    Equipment,
    MaintenanceRequest,
    Team,
    TeamMember,
    User,
    WorkCenter,
)


# Use SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with a fresh database."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    # Create test client without running startup events
    test_client = TestClient(app, raise_server_exceptions=False)
    yield test_client

    app.dependency_overrides.clear()


def _add(db, row):
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def make_user(db):
    def _make(username: str, role: str):
        return _add(db, User(username=username, email=f"{username}@example.com", role=role))

    return _make


@pytest.fixture
def employee(make_user):
    return make_user("employee", "EMPLOYEE")


@pytest.fixture
def other_employee(make_user):
    return make_user("employee2", "EMPLOYEE")


@pytest.fixture
def technician(make_user):
    return make_user("tech", "TECHNICIAN")


@pytest.fixture
def technician_b(make_user):
    return make_user("tech_b", "TECHNICIAN")


@pytest.fixture
def admin(make_user):
    return make_user("admin", "ADMIN")


@pytest.fixture
def team(db):
    return _add(db, Team(name="Mechanics", description="Mechanical maintenance"))


@pytest.fixture
def other_team(db):
    return _add(db, Team(name="Electricians"))


@pytest.fixture
def add_member(db):
    def _add_member(user, team):
        return _add(db, TeamMember(user_id=user.id, team_id=team.id))

    return _add_member


@pytest.fixture
def category(db):
    return _add(db, Category(name="Machinery"))


@pytest.fixture
def equipment(db):
    return _add(db, Equipment(name="CNC Lathe", serial_number="CNC-001"))


@pytest.fixture
def work_center(db):
    return _add(db, WorkCenter(name="Assembly Line 1", code="WC-ASM-1"))


@pytest.fixture
def make_request(db, category, equipment):
    """Insert a maintenance request row directly, bypassing the API."""

    def _make(created_by, team=None, assigned_to=None, status="NEW", subject="Leaking oil"):
        return _add(
            db,
            MaintenanceRequest(
                subject=subject,
                description="Oil under the machine",
                maintenance_for="EQUIPMENT",
                maintenance_type="CORRECTIVE",
                equipment_id=equipment.id,
                category_id=category.id,
                priority="HIGH",
                status=status,
                team_id=team.id if team is not None else None,
                assigned_to_id=assigned_to.id if assigned_to is not None else None,
                created_by_id=created_by.id,
            ),
        )

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": user.username})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def team_scoped_writes(monkeypatch):
    """Require team membership for technician update/assign."""
    monkeypatch.setattr(get_settings(), "TECHNICIAN_WRITES_REQUIRE_TEAM", True)
