"""
FastAPI app entrypoint.

Booking availability and slot allocation: availability, bookings, holds, waitlist,
Stripe webhooks and host schedule management. Periodic tasks run on an in-process
BackgroundScheduler; /cron/* exposes the same tasks for external schedulers.
"""
import logging
import os
import threading
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from app.api.routes import availability, bookings, cron, holds, schedules, waitlist, webhooks
from app.core.constants import (
    MATERIALIZE_INTERVAL_MINUTES,
    MATERIALIZE_JOB_ID,
    REAP_INTERVAL_MINUTES,
    REAP_JOB_ID,
    REMINDER_INTERVAL_MINUTES,
    REMINDER_JOB_ID,
)
from app.scheduler.materialize_job import run_materialize_job
from app.scheduler.reap_job import run_reap_job
from app.scheduler.reminder_job import run_reminder_job

logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("DISABLE_SCHEDULER", "").lower() not in ("1", "true", "yes"):
        _scheduler.add_job(
            run_materialize_job,
            "interval",
            minutes=MATERIALIZE_INTERVAL_MINUTES,
            id=MATERIALIZE_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.add_job(
            run_reap_job,
            "interval",
            minutes=REAP_INTERVAL_MINUTES,
            id=REAP_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.add_job(
            run_reminder_job,
            "interval",
            minutes=REMINDER_INTERVAL_MINUTES,
            id=REMINDER_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.start()
        app.state.scheduler = _scheduler

        def startup_background():
            # Fill the horizon once on boot so availability does not wait an hour.
            result = run_materialize_job()
            logger.info("Startup materialize: %s", result)

        threading.Thread(target=startup_background, daemon=True).start()
    logger.info("Backend ready at http://127.0.0.1:8000")
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="Tablebook Allocation", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(availability.router, tags=["availability"])
app.include_router(bookings.router, tags=["bookings"])
app.include_router(holds.router, tags=["holds"])
app.include_router(waitlist.router, tags=["waitlist"])
app.include_router(webhooks.router, tags=["webhooks"])
app.include_router(schedules.router, tags=["schedules"])
app.include_router(cron.router, tags=["cron"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "Tablebook API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
