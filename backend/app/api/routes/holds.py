"""Checkout holds: keep seats out of other guests' availability while this session pays."""
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_engine, raise_http
from app.core.errors import BookingEngineError
from app.services.allocation.engine import BookingEngine

router = APIRouter()


class CreateHoldRequest(BaseModel):
    slot_id: int
    party_size: int = Field(..., ge=1)
    session_id: str = Field(..., min_length=1, max_length=128)


@router.post("/holds", status_code=201)
def create_hold(body: CreateHoldRequest, engine: BookingEngine = Depends(get_engine)) -> dict[str, Any]:
    try:
        hold = engine.create_hold(body.slot_id, body.party_size, body.session_id)
    except BookingEngineError as e:
        raise_http(e)
    return {
        "id": hold.id,
        "slot_id": hold.slot_id,
        "session_id": hold.session_id,
        "party_size": hold.party_size,
        "expires_at": hold.expires_at.isoformat(),
    }


@router.delete("/holds/{session_id}")
def release_hold(session_id: str, engine: BookingEngine = Depends(get_engine)) -> dict[str, int]:
    return {"released": engine.release_hold(session_id)}
