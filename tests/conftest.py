import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SCHEDULER_ENABLED"] = "false"

import itertools
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.security import create_access_token
from app.db.base import Base, get_db
from app.main import app as fastapi_app
from app.models.payment import PaymentStatus
from app.models.user import User, UserRoleEnum, YearTier
from app.services.payment import new_payment_record
from app.services.periods import parse_month

# Fixed clock for service-level tests
NOW = datetime(2025, 3, 1, 12, 0, 0)
DEADLINE = datetime(2025, 3, 5, 23, 59, 59)


@pytest.fixture(autouse=True)
def isolated_files(tmp_path, monkeypatch):
    """Keep audit logs and uploaded proofs out of the working tree."""
    monkeypatch.setattr("app.core.audit.LOGS_DIR", tmp_path / "logs")
    monkeypatch.setattr("app.services.blob_store.PAYMENT_PROOFS_DIR", tmp_path / "proofs")
    return tmp_path


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    """Return a database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Factory creating committed users."""
    counter = itertools.count(1)

    def _make(name=None, year=YearTier.FIRST, role=UserRoleEnum.MEMBER, is_active=True, email=None, usn=None):
        n = next(counter)
        user = User(
            name=name or f"Member {n}",
            usn=usn or f"1AT22CS{n:03d}",
            email=email or f"member{n}@example.com",
            year=year,
            branch="CSE",
            role=role,
            total_paid=Decimal("0.00"),
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def treasurer(make_user):
    """Create and return the club treasurer."""
    return make_user(name="Tara Treasurer", year=YearTier.THIRD, role=UserRoleEnum.TREASURER,
                     email="treasurer@example.com", usn="1AT21CS999")


@pytest.fixture
def member(make_user):
    """Create and return a first-year member."""
    return make_user(name="Asha First", year=YearTier.FIRST, email="asha@example.com")


@pytest.fixture
def other_member(make_user):
    """Create and return a second-year member."""
    return make_user(name="Ravi Second", year=YearTier.SECOND, email="ravi@example.com")


@pytest.fixture
def third_year_member(make_user):
    """Create and return a third-year member."""
    return make_user(name="Kiran Third", year=YearTier.THIRD, email="kiran@example.com")


@pytest.fixture
def make_record(db):
    """Factory creating committed payment records directly in a given state."""

    def _make(member, month="March", year=2025, amount="50.00", deadline=DEADLINE,
              status=PaymentStatus.PENDING, now=NOW, **fields):
        month_name, month_number = parse_month(month)
        record = new_payment_record(
            member, month_name, month_number, year, Decimal(str(amount)), deadline,
            "Payment record created for test", now=now, status=status,
        )
        for key, value in fields.items():
            setattr(record, key, value)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make


@pytest.fixture
def pending_record(make_record, member):
    """A Pending March 2025 record for the first-year member."""
    return make_record(member)


@pytest.fixture
def awaiting_record(make_record, member):
    """A record the member has confirmed, waiting for the treasurer."""
    return make_record(
        member,
        status=PaymentStatus.AWAITING_VERIFICATION,
        member_confirmed_payment=True,
        member_confirmed_date=NOW,
    )


# =============================================================================
# API clients
# =============================================================================

@pytest.fixture
def test_app(session_factory):
    """FastAPI app wired to the test database."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


def _auth_headers(user):
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_client(test_app):
    """Return an unauthenticated API client."""
    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def treasurer_client(test_app, treasurer):
    """Return API client authenticated as treasurer."""
    with TestClient(test_app) as client:
        client.headers.update(_auth_headers(treasurer))
        yield client


@pytest.fixture
def member_client(test_app, member):
    """Return API client authenticated as the first-year member."""
    with TestClient(test_app) as client:
        client.headers.update(_auth_headers(member))
        yield client


@pytest.fixture
def other_member_client(test_app, other_member):
    """Return API client authenticated as the second-year member."""
    with TestClient(test_app) as client:
        client.headers.update(_auth_headers(other_member))
        yield client
