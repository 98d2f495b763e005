from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Callable

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from loguru import logger

from pipelines.market_sync import SyncOutcome, run_market_sync
from pipelines.scheduler import MarketSyncScheduler

from . import schemas
from .core.config import settings
from .db import get_db, init_db
from .services.market_service import MarketQuery, MarketService

app = FastAPI(title="Market Calendar Sync API", version="0.1.0", debug=settings.debug)

_scheduler: MarketSyncScheduler | None = None


@app.on_event("startup")
def on_startup() -> None:
    """Initialize storage and start the recurring sync when enabled."""

    global _scheduler
    init_db()
    if not settings.enable_sync_schedule:
        logger.info("Recurring market sync disabled")
        return
    _scheduler = MarketSyncScheduler(interval_seconds=settings.sync_interval_seconds)
    _scheduler.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown()
        _scheduler = None


@app.get("/health", response_model=schemas.Health, tags=["system"])
def healthcheck() -> schemas.Health:
    """Basic readiness probe consumed by infrastructure monitors."""

    return schemas.Health(status="ok", timestamp=datetime.now(timezone.utc))


def _sync_runner() -> Callable[[], SyncOutcome]:
    return run_market_sync


@app.post(
    "/api/update-markets",
    response_model=schemas.SyncResponse,
    responses={500: {"model": schemas.SyncFailure}},
    tags=["sync"],
)
def update_markets(runner: Callable[[], SyncOutcome] = Depends(_sync_runner)):
    """Run one reconciliation cycle immediately."""

    outcome = runner()
    if not outcome.success or outcome.result is None:
        failure = schemas.SyncFailure(error=outcome.error or "Unknown error")
        return JSONResponse(status_code=500, content=failure.model_dump())
    result = outcome.result
    return schemas.SyncResponse(
        updated=result.updated,
        errors=result.errors,
        shocks=result.shocks,
        skipped=result.skipped,
        alert_id=result.alert_id,
        timestamp=outcome.timestamp,
    )


def _market_query(
    *,
    start: Annotated[date | None, Query(description="Earliest resolve date (inclusive)")] = None,
    end: Annotated[date | None, Query(description="Latest resolve date (inclusive)")] = None,
    catalyst: Annotated[str | None, Query(description="Catalyst group filter")] = None,
    top_per_catalyst: Annotated[
        bool,
        Query(description="Keep only the highest-volume market per catalyst and day"),
    ] = False,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> MarketQuery:
    """Normalize shared market listing query parameters."""

    if start and end and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    return MarketQuery(
        start=start,
        end=end,
        catalyst=catalyst,
        top_per_catalyst=top_per_catalyst,
        limit=limit,
        offset=offset,
    )


def _market_service(db=Depends(get_db)) -> MarketService:
    """Provide the market service wired with a SQLAlchemy session."""

    return MarketService(db)


@app.get("/markets", response_model=schemas.MarketList, tags=["markets"])
def list_markets(
    *,
    query: MarketQuery = Depends(_market_query),
    service: MarketService = Depends(_market_service),
):
    """List persisted markets for a resolve-date window."""

    result = service.list_markets(query)
    return schemas.MarketList(total=result.total, items=list(result.markets))


@app.get("/markets/{local_id}", response_model=schemas.Market, tags=["markets"])
def get_market(local_id: str, service: MarketService = Depends(_market_service)):
    """Retrieve a single market by its local identifier."""

    market = service.get_market(local_id)
    if not market:
        raise HTTPException(status_code=404, detail="Market not found")
    return market


@app.get("/shock-alerts", response_model=schemas.ShockAlertList, tags=["alerts"])
def list_shock_alerts(
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
    service: MarketService = Depends(_market_service),
):
    """Most recent shock alerts first."""

    return schemas.ShockAlertList(items=service.list_alerts(limit=limit))
