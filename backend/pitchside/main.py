"""
backend/pitchside/main.py

Purpose:
    Application assembly: routers and middleware, translation of driver
    failures into HTTP responses, and the process lifecycle (database,
    realtime push pipeline, challenge sweeper schedule).

Dependencies:
    - pitchside.database
    - pitchside.services.event_bus
    - pitchside.services.websocket_manager
    - pitchside.workers.challenge_sweeper
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import pitchside.database as _db
from pitchside.config import settings
from pitchside.middleware.logging import StructuredLoggingMiddleware, setup_logging
from pitchside.routers import (
    auth,
    challenges,
    invitations,
    matches,
    notifications,
    payments,
    pitches,
    reservations,
    ws,
)
from pitchside.services.event_bus import event_bus
from pitchside.services.event_handlers import register_event_handlers
from pitchside.services.websocket_manager import websocket_manager
from pitchside.workers.challenge_sweeper import sweep_stale_challenges

logger = logging.getLogger("pitchside")
scheduler = AsyncIOScheduler()

_UNAVAILABLE = {"detail": "Service temporarily unavailable."}
_INTERNAL = {"detail": "An internal error occurred."}


async def _start_realtime() -> None:
    if settings.WS_EVENTS_ENABLED:
        await websocket_manager.start()
    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
    logger.info(
        "Realtime pipeline: websocket=%s event_bus=%s",
        settings.WS_EVENTS_ENABLED,
        settings.EVENT_BUS_ENABLED,
    )


async def _stop_realtime() -> None:
    await event_bus.stop()
    await websocket_manager.stop()


def _schedule_sweeper() -> None:
    if not settings.CHALLENGE_SWEEPER_ENABLED:
        return
    scheduler.add_job(
        sweep_stale_challenges,
        "interval",
        minutes=settings.CHALLENGE_SWEEPER_INTERVAL_MINUTES,
        id="challenge_sweeper",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await _db.connect_db()
    await _start_realtime()
    _schedule_sweeper()
    scheduler.start()
    logger.info("Scheduler running with jobs: %s", [job.id for job in scheduler.get_jobs()])

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    await _stop_realtime()
    await _db.close_db()


app = FastAPI(
    title="Pitchside",
    description="Match lifecycle for booked pitches: rosters, live events, settlement",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)
app.add_middleware(StructuredLoggingMiddleware)

for module in (auth, matches, invitations, challenges, payments, pitches, notifications, reservations, ws):
    app.include_router(module.router)


def _field_of(error: dict) -> str:
    # Drop the leading "body" / "query" / "path" segment.
    loc = error.get("loc") or ()
    parts = loc[1:] if len(loc) > 1 else loc
    return ".".join(str(p) for p in parts) or "unknown"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"field": _field_of(err), "message": err.get("msg", "Invalid value.")} for err in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(InvalidId)
async def invalid_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=404, content={"detail": "Not found."})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry."})


@app.exception_handler(ServerSelectionTimeoutError)
@app.exception_handler(ConnectionFailure)
async def database_unreachable_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database unreachable during %s %s: %s", request.method, request.url.path, type(exc).__name__)
    return JSONResponse(status_code=503, content=_UNAVAILABLE)


@app.exception_handler(OperationFailure)
async def database_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database rejected %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=_INTERNAL)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_INTERNAL)


@app.get("/health")
async def health():
    """Database reachability plus the state of the push pipeline."""
    try:
        db_ok = (await _db.db.command("ping")).get("ok") == 1.0
    except Exception:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "event_bus": {"running": event_bus.running},
        "websocket": {"active_connections": websocket_manager.stats()["active_connections"]},
    }
