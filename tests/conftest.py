"""Pytest configuration: in-memory database, seeded accounts and API client."""

import os
from datetime import date
from decimal import Decimal

# Set test database URL BEFORE any imports from condo_ledger
# so the module-level engine never touches a file database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from condo_ledger.models import Base, ObligationStream  # noqa: E402
from condo_ledger.services.obligation_repository import ObligationRepository  # noqa: E402


@pytest.fixture
def engine():
    """Create a fresh in-memory database with all tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create test database session."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def repository(db_session):
    """Repository bound to the test session."""
    return ObligationRepository(db_session)


@pytest.fixture
def make_account(repository, db_session):
    """Factory creating committed accounts (grace 10 days, 5% monthly by default)."""

    def _make(name="Unit 101", credit_balance=0, grace_period_days=10, penalty_rate_percent=Decimal("5")):
        account = repository.create_account(
            name=name,
            credit_balance=credit_balance,
            grace_period_days=grace_period_days,
            penalty_rate_percent=penalty_rate_percent,
        )
        db_session.commit()
        return account

    return _make


@pytest.fixture
def make_obligation(repository, db_session):
    """Factory creating committed obligations."""

    def _make(account, period, due_date, base_amount, stream=ObligationStream.DUES, description=None):
        obligation = repository.add_obligation(
            account_id=account.id,
            stream=stream,
            period=period,
            due_date=due_date,
            base_amount=base_amount,
            description=description,
        )
        db_session.commit()
        return obligation

    return _make


@pytest.fixture
def account(make_account):
    """Default account with no credit."""
    return make_account()


@pytest.fixture
def november_dues(account, make_obligation):
    """Dues of 950.00 for 2025-11, due 2025-11-01."""
    return make_obligation(account, "2025-11", date(2025, 11, 1), 95000)


@pytest.fixture
def client(db_session):
    """Create test client with database dependency override."""
    from condo_ledger.main import app
    from condo_ledger.services import get_db

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan (file logging, create_all) is not run
    yield TestClient(app)
    app.dependency_overrides.clear()
