"""Shared fixtures: in-memory database, fake repository and API client."""

from dataclasses import replace
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from settlement.core.database import Base, get_db
from settlement.core.errors import BuildingNotFoundError, PersistenceError
from settlement.main import app
from settlement.models.billing import BillingPeriod
from settlement.models.enums import BillingPeriodStatus
from settlement.services.billing_repository import BillingInputs

FIXED_NOW = datetime(2025, 3, 1, 12, 0, 0)


class FakeBillingRepository:
    """In-memory BillingRepository that keeps the last stored settlements."""

    def __init__(self, inputs: BillingInputs, fail_on_write: bool = False) -> None:
        self.inputs = inputs
        self.fail_on_write = fail_on_write
        self.periods: dict[tuple[int, int], BillingPeriod] = {}
        self.stored: dict[tuple[int, int], list] = {}
        self.writes = 0

    def load_inputs(self, building_id: int, year: int) -> BillingInputs:
        if building_id != self.inputs.building.id:
            raise BuildingNotFoundError(building_id)
        return replace(
            self.inputs,
            year=year,
            services=[s for s in self.inputs.services if s.is_active],
        )

    def ensure_period(self, building_id: int, year: int) -> BillingPeriod:
        if building_id != self.inputs.building.id:
            raise BuildingNotFoundError(building_id)
        key = (building_id, year)
        if key not in self.periods:
            self.periods[key] = BillingPeriod(
                id=len(self.periods) + 1,
                building_id=building_id,
                year=year,
                status=BillingPeriodStatus.DRAFT.value,
            )
        return self.periods[key]

    def replace_period_results(self, building_id, year, settlements, generated_at) -> int:
        if self.fail_on_write:
            raise PersistenceError("disk full")
        period = self.ensure_period(building_id, year)
        period.status = BillingPeriodStatus.CALCULATED.value
        period.calculated_at = generated_at
        self.stored[(building_id, year)] = list(settlements)
        self.writes += 1
        return period.id


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def db_engine():
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
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_repository():
    """Factory for FakeBillingRepository instances."""
    return FakeBillingRepository
