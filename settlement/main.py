"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from settlement.api.routes import billing, health
from settlement.core.config import settings
from settlement.core.database import Base, engine
from settlement.core.logging import setup_logging

# Import models for Base.metadata.create_all - order matters for foreign keys
from settlement.models import (  # noqa: F401
    building,
    unit,
    service,
    cost,
    meter,
    meter_reading,
    advance,
    billing as billing_models,
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    setup_logging()
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Utility-cost apportionment and annual settlement",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(billing.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "settlement.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
