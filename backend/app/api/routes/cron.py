"""
HTTP triggers for the periodic tasks, for platforms that schedule by calling a URL.
Authorization: Bearer <CRON_SECRET>. Disabled when CRON_SECRET is not set.
"""
import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException

from app.api.deps import get_engine
from app.config import settings
from app.services.allocation.engine import BookingEngine

router = APIRouter()
logger = logging.getLogger(__name__)

TASKS = ("materialize", "reap", "reminders")


def _check_cron_auth(authorization: str | None = Header(None)) -> None:
    secret = settings.cron_secret
    if not secret:
        raise HTTPException(status_code=503, detail="Cron triggers are disabled (CRON_SECRET not set)")
    if not secrets.compare_digest(authorization or "", f"Bearer {secret}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/cron/{task}", dependencies=[Depends(_check_cron_auth)])
def run_task(task: str, engine: BookingEngine = Depends(get_engine)) -> dict[str, Any]:
    if task == "materialize":
        result = engine.materialize_upcoming_slots()
    elif task == "reap":
        result = engine.reap_expired_holds()
    elif task == "reminders":
        result = engine.send_upcoming_reminders()
    else:
        raise HTTPException(status_code=404, detail=f"Unknown task {task!r}; expected one of {', '.join(TASKS)}")
    logger.info("Cron task %s: %s", task, result)
    return {"task": task, "result": result}
