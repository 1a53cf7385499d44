import os
import tempfile
from datetime import datetime, timedelta, timezone

# Set environment variables BEFORE any imports that might use settings
# Use a temporary directory for test database to avoid permission issues
_test_db_dir = tempfile.mkdtemp()
_test_db_path = os.path.join(_test_db_dir, "test_onboarding.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_test_db_path}"
os.environ["SECRET_KEY"] = "test-secret-key-min-32-characters-long-for-testing"
os.environ["ALGORITHM"] = "HS256"
os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "30"
os.environ["FIRST_ADMIN_EMAIL"] = "admin@test.example.com"
os.environ["FIRST_ADMIN_PASSWORD"] = "AdminTest123!"
os.environ["DATAVERSE_URL"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session

from app.main import app
from app.clients.entities import CreatedEntity
from app.core.config import settings
from app.core.security import create_access_token, get_password_hash
from app.db.models.staff import Role as RoleModel, User as UserModel
from app.events.emitter import EventEmitter
from app.services.flows import membership_flow, registration_flow
from app.services.orchestrator import Orchestrator


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test and run migrations."""
    temp_db_dir = tempfile.mkdtemp()
    test_db_path = os.path.join(temp_db_dir, "test.db")
    test_db_url = f"sqlite:///{test_db_path}"

    test_engine = create_engine(
        test_db_url,
        connect_args={"check_same_thread": False},
        poolclass=None,  # Don't use connection pooling for SQLite
    )

    # Enable WAL mode to reduce locking issues
    @event.listens_for(test_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_engine
    )

    # Run Alembic migrations to set up the database schema and seed data
    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", test_db_url)
    command.upgrade(alembic_cfg, "head")

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        test_engine.dispose()

        for suffix in ["", "-wal", "-shm"]:
            path = f"{test_db_path}{suffix}"
            if os.path.exists(path):
                os.remove(path)
        if os.path.exists(temp_db_dir):
            os.rmdir(temp_db_dir)


@pytest.fixture(scope="function")
def db(db_session):
    """Alias for db_session to match test naming conventions."""
    return db_session


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================


class FakeEntityClient:
    """In-memory stand-in for one Dataverse table.

    All clients of a test share ``journal`` so call order across entity types
    can be asserted.
    """

    def __init__(self, entity_type: str, journal: list):
        self.entity_type = entity_type
        self.journal = journal
        self.records: dict[str, dict] = {}
        self.create_calls: list[tuple[dict, dict]] = []
        self.create_error: Exception | None = None
        self.delete_error: Exception | None = None

    def create(self, payload, parent_keys):
        self.journal.append(("create", self.entity_type))
        self.create_calls.append((dict(payload), dict(parent_keys)))
        if self.create_error is not None:
            raise self.create_error
        external_id = f"{self.entity_type}-{len(self.create_calls)}"
        self.records[external_id] = dict(payload)
        return CreatedEntity(external_id=external_id)

    def delete(self, external_id):
        self.journal.append(("delete", self.entity_type))
        if self.delete_error is not None:
            raise self.delete_error
        self.records.pop(external_id, None)


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def journal() -> list:
    return []


@pytest.fixture
def registration_clients(journal) -> dict[str, FakeEntityClient]:
    return {
        entity_type: FakeEntityClient(entity_type, journal)
        for entity_type in ("account", "address", "contact", "identity", "education", "management")
    }


@pytest.fixture
def membership_clients(journal) -> dict[str, FakeEntityClient]:
    return {
        entity_type: FakeEntityClient(entity_type, journal)
        for entity_type in ("category", "employment", "practices", "preferences")
    }


@pytest.fixture
def clock() -> FakeClock:
    # Same year as the wall clock so membership_data stays in range.
    return FakeClock(datetime(datetime.now(timezone.utc).year, 3, 2, 9, 0, 0))


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def emitter(events) -> EventEmitter:
    return EventEmitter([events.append])


@pytest.fixture
def registration_orchestrator(db, registration_clients, emitter, clock) -> Orchestrator:
    return Orchestrator(
        db,
        registration_flow(settings),
        clients=registration_clients,
        emitter=emitter,
        clock=clock,
    )


@pytest.fixture
def membership_orchestrator(db, membership_clients, emitter, clock) -> Orchestrator:
    return Orchestrator(
        db,
        membership_flow(settings),
        clients=membership_clients,
        emitter=emitter,
        clock=clock,
    )


# ============================================================================
# BUNDLES
# ============================================================================


@pytest.fixture
def registration_data() -> dict:
    """A complete registration that passes every cross-entity check."""
    return {
        "account": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "ada@example.com",
            "date_of_birth": "1990-05-17",
        },
        "address": {
            "street": "100 Queen St W",
            "city": "Toronto",
            "province": "ON",
            "postal_code": "M5H 2N2",
            "country": "CA",
        },
        "contact": {"email": "ada@example.com", "phone": "+1 416 555 0100"},
        "identity": {"chosen_name": "Ada", "languages": ["en"]},
        "education_type": "ot",
        "education": {
            "category": "ot",
            "university": "University of Toronto",
            "graduation_year": 2014,
        },
        "declaration": True,
    }


@pytest.fixture
def membership_data() -> dict:
    """A Full membership for the current year, with employment and practices."""
    return {
        "account_id": "acct-0001",
        "declaration": True,
        "category": {"category": 1, "membership_year": datetime.now(timezone.utc).year},
        "employment": {"employment_status": "full_time", "role_descriptor": "clinician"},
        "practices": {"clients_age": ["adults"]},
    }


# ============================================================================
# HTTP CLIENT AND USERS
# ============================================================================


@pytest.fixture(scope="function")
def client(db_session, registration_clients, membership_clients):
    """Create a test client with database and entity client overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    from app.api.deps import get_db, get_membership_clients, get_registration_clients

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registration_clients] = lambda: registration_clients
    app.dependency_overrides[get_membership_clients] = lambda: membership_clients

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_user(db: Session) -> dict:
    """The admin user seeded by migration 001."""
    from app.repositories.user import get_user_by_email

    user = get_user_by_email(db, settings.first_admin_email)
    if not user:
        raise RuntimeError("Admin user not found. Check migration 001.")

    return {
        "id": user.id,
        "email": user.email,
        "password": settings.first_admin_password,  # Plaintext password from env
        "role_id": user.role_id,
    }


@pytest.fixture(scope="function")
def admin_token(admin_user: dict) -> str:
    return create_access_token(data={"sub": str(admin_user["id"])})


@pytest.fixture(scope="function")
def staff_user(db: Session) -> dict:
    """Create a staff user for testing."""
    email = "staff@example.com"
    password = "StaffPass123!"

    staff_role = db.query(RoleModel).filter(RoleModel.name == "staff").first()
    if not staff_role:
        raise RuntimeError("Staff role not found")

    user = UserModel(
        email=email,
        name="Staff Member",
        password_hash=get_password_hash(password),
        role_id=staff_role.id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    return {
        "id": user.id,
        "email": user.email,
        "password": password,
        "role_id": user.role_id,
    }


@pytest.fixture(scope="function")
def staff_token(staff_user: dict) -> str:
    return create_access_token(data={"sub": str(staff_user["id"])})
