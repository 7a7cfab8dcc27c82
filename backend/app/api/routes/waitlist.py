"""Waitlist: join a full slot. Promotion happens in the engine when seats free up."""
import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_engine, raise_http
from app.core.errors import BookingEngineError
from app.services.allocation.allocator import GuestInfo
from app.services.allocation.engine import BookingEngine

router = APIRouter()
logger = logging.getLogger(__name__)


class JoinWaitlistRequest(BaseModel):
    offering_id: int
    slot_id: int
    party_size: int = Field(1, ge=1)
    guest_name: str = Field(..., min_length=1, max_length=255)
    guest_email: str = Field(..., min_length=3, max_length=255)
    guest_phone: str | None = None


@router.post("/waitlist", status_code=201)
def join_waitlist(body: JoinWaitlistRequest, engine: BookingEngine = Depends(get_engine)) -> dict[str, Any]:
    guest = GuestInfo(name=body.guest_name, email=body.guest_email, phone=body.guest_phone)
    try:
        entry = engine.join_waitlist(body.offering_id, body.slot_id, body.party_size, guest)
    except BookingEngineError as e:
        raise_http(e)
    return {
        "id": entry.id,
        "offering_id": entry.offering_id,
        "slot_id": entry.slot_id,
        "party_size": entry.party_size,
        "status": entry.status,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
