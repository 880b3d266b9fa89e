"""FastAPI entry point for the affiliate payout service."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from affiliate_desk import __version__
from affiliate_desk.config import configure_logging, get_settings
from affiliate_desk.database import init_db
from affiliate_desk.errors import AffiliateDeskError
from affiliate_desk.jobs.scheduler import shutdown_scheduler, start_scheduler
from affiliate_desk.routers import affiliates, payments, payouts, tds


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_db()
    scheduler_enabled = get_settings().PAYOUT_SCHEDULER_ENABLED
    if scheduler_enabled:
        start_scheduler()
    yield
    if scheduler_enabled:
        shutdown_scheduler()


app = FastAPI(title="Affiliate Desk", version=__version__, lifespan=lifespan)

app.include_router(payments.router)
app.include_router(payouts.router)
app.include_router(affiliates.router)
app.include_router(tds.router)


@app.get("/health")
def health() -> Response:
    """Simple health endpoint for load balancers and platform checks."""
    return Response(content='{"status":"ok"}', media_type="application/json")


@app.exception_handler(AffiliateDeskError)
async def affiliate_desk_error_handler(request: Request, exc: AffiliateDeskError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
