"""
Guest availability: slots for an offering on a date. Days with no slots yet are generated
on demand from the offering's active schedule definitions.
"""
import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_engine, raise_http
from app.core.errors import BookingEngineError
from app.services.allocation.engine import BookingEngine

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/offerings/{offering_id}/availability")
def get_availability(
    offering_id: int,
    day: date = Query(..., alias="date"),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        slots = engine.availability(offering_id, day)
    except BookingEngineError as e:
        raise_http(e)
    return {"offering_id": offering_id, "date": day.isoformat(), "slots": slots}
