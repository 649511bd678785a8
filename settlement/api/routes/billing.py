"""Billing routes: open periods, run settlements and read results."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.core.database import get_db
from settlement.core.errors import (
    BuildingNotFoundError,
    ConfigurationError,
    FormulaError,
    PersistenceError,
    SettlementError,
)
from settlement.schemas.billing import (
    BillingPeriodCreate,
    BillingPeriodResponse,
    BillingResultResponse,
    CalculationSummary,
)
from settlement.services import billing_query
from settlement.services.billing_engine import BillingEngine
from settlement.services.billing_repository import SqlAlchemyBillingRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


@dataclass
class _PeriodLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


# One lock per (building, year) while a run of that period is active or waiting
_period_locks: dict[tuple[int, int], _PeriodLock] = {}
_period_locks_guard = threading.Lock()


@contextmanager
def _period_lock(building_id: int, year: int) -> Iterator[None]:
    """Serialize runs of one period; the entry is dropped when the last holder leaves."""
    key = (building_id, year)
    with _period_locks_guard:
        entry = _period_locks.setdefault(key, _PeriodLock())
        entry.holders += 1
    try:
        with entry.lock:
            yield
    finally:
        with _period_locks_guard:
            entry.holders -= 1
            if entry.holders == 0:
                del _period_locks[key]


def _to_http_error(exc: SettlementError) -> HTTPException:
    if isinstance(exc, BuildingNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ConfigurationError, FormulaError)):
        return HTTPException(
            status_code=422,
            detail={"message": str(exc), "service_id": exc.service_id},
        )
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def get_engine(db: Session = Depends(get_db)) -> BillingEngine:
    """Dependency for an engine bound to the request's session."""
    return BillingEngine.from_settings(SqlAlchemyBillingRepository(db), settings)


@router.post(
    "/buildings/{building_id}/billing-periods",
    response_model=BillingPeriodResponse,
    status_code=status.HTTP_201_CREATED,
)
def open_billing_period(
    building_id: int,
    data: BillingPeriodCreate,
    engine: BillingEngine = Depends(get_engine),
) -> BillingPeriodResponse:
    """Open a billing period for the year in DRAFT state.

    Opening an already existing period returns it unchanged.
    """
    try:
        period = engine.ensure_period(building_id, data.year)
    except SettlementError as exc:
        raise _to_http_error(exc) from exc
    return billing_query.period_to_response(period)


@router.post(
    "/buildings/{building_id}/billing-periods/{year}/calculate",
    response_model=CalculationSummary,
)
def calculate_billing_period(
    building_id: int,
    year: int,
    engine: BillingEngine = Depends(get_engine),
) -> CalculationSummary:
    """Calculate the settlement of every unit and replace the stored results."""
    with _period_lock(building_id, year):
        try:
            return engine.calculate(building_id, year)
        except SettlementError as exc:
            logger.error("Settlement of building %s for %s failed: %s", building_id, year, exc)
            raise _to_http_error(exc) from exc


@router.get(
    "/buildings/{building_id}/billing-periods/{year}",
    response_model=BillingPeriodResponse,
)
def get_billing_period(
    building_id: int,
    year: int,
    db: Session = Depends(get_db),
) -> BillingPeriodResponse:
    """Get a billing period with all unit results and line items."""
    period = billing_query.get_period(db, building_id, year)
    return billing_query.period_to_response(period)


@router.get("/billing-results/{result_id}", response_model=BillingResultResponse)
def get_billing_result(
    result_id: int,
    db: Session = Depends(get_db),
) -> BillingResultResponse:
    """Get one unit's result with its line items."""
    result = billing_query.get_result(db, result_id)
    return billing_query.result_to_response(result)
