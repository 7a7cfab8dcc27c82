"""
Bookings API: guest create / lookup / cancel / modify, plus host walk-ins and status actions.

Host actions need the X-Host-Id header (opaque id from the identity provider) and only
apply to the host's own offerings. A cancel carrying X-Host-Id is a host cancellation.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.deps import get_engine, optional_host_id, raise_http, require_host_id
from app.core.errors import BookingEngineError
from app.models.booking import Booking
from app.services.allocation.allocator import GuestInfo
from app.services.allocation.engine import BookingEngine

router = APIRouter()
logger = logging.getLogger(__name__)


def booking_to_dict(b: Booking) -> dict[str, Any]:
    return {
        "id": b.id,
        "booking_number": b.booking_number,
        "slot_id": b.slot_id,
        "offering_id": b.offering_id,
        "guest_name": b.guest_name,
        "guest_email": b.guest_email,
        "party_size": b.party_size,
        "status": b.status,
        "payment_status": b.payment_status,
        "total_amount_cents": b.total_amount_cents,
        "refunded_amount_cents": b.refunded_amount_cents,
        "is_walk_in": b.is_walk_in,
        "checked_in_at": b.checked_in_at.isoformat() if b.checked_in_at else None,
        "checked_out_at": b.checked_out_at.isoformat() if b.checked_out_at else None,
        "cancelled_at": b.cancelled_at.isoformat() if b.cancelled_at else None,
        "created_at": b.created_at.isoformat() if b.created_at else None,
    }


class GuestFields(BaseModel):
    guest_name: str = Field(..., min_length=1, max_length=255)
    guest_email: str = Field(..., min_length=3, max_length=255)
    guest_phone: str | None = None
    special_requests: str | None = None

    def guest(self) -> GuestInfo:
        return GuestInfo(
            name=self.guest_name,
            email=self.guest_email,
            phone=self.guest_phone,
            special_requests=self.special_requests,
        )


class CreateBookingRequest(GuestFields):
    slot_id: int
    party_size: int = Field(..., ge=1)
    payment_method: str | None = None
    hold_session_id: str | None = None


class WalkInRequest(BaseModel):
    slot_id: int
    party_size: int = Field(..., ge=1)
    guest_name: str = "Walk-in"
    guest_email: str = ""
    guest_phone: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class PartySizeRequest(BaseModel):
    party_size: int = Field(..., ge=1)


class ChangeSlotRequest(BaseModel):
    slot_id: int


# --- Guest ---


@router.post("/bookings", status_code=201)
def create_booking(body: CreateBookingRequest, engine: BookingEngine = Depends(get_engine)) -> dict[str, Any]:
    """
    Reserve and pay. 409 with {"waitlist": true} when the slot is too full; 402 when the
    card is declined (seats already released). A PENDING result means the payment webhook
    will settle it.
    """
    try:
        booking = engine.create_booking(
            body.slot_id,
            body.party_size,
            body.guest(),
            body.payment_method,
            hold_session_id=body.hold_session_id,
        )
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.get("/bookings/{booking_number}")
def get_booking(booking_number: str, engine: BookingEngine = Depends(get_engine)) -> dict[str, Any]:
    try:
        booking = engine.allocator.get_booking(booking_number)
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.post("/bookings/{booking_id}/cancel")
def cancel_booking(
    booking_id: int,
    body: CancelRequest | None = None,
    host_id: str | None = Depends(optional_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.cancel_booking(
            booking_id,
            body.reason if body else None,
            cancelled_by="host" if host_id else "guest",
            host_id=host_id,
        )
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.patch("/bookings/{booking_id}/party-size")
def modify_party_size(
    booking_id: int,
    body: PartySizeRequest,
    host_id: str | None = Depends(optional_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.allocator.modify_party_size(booking_id, body.party_size, modified_by=host_id or "guest")
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.patch("/bookings/{booking_id}/slot")
def change_slot(
    booking_id: int,
    body: ChangeSlotRequest,
    host_id: str | None = Depends(optional_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.allocator.change_slot(booking_id, body.slot_id, modified_by=host_id or "guest")
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


# --- Host ---


@router.post("/bookings/walk-in", status_code=201)
def create_walk_in(
    body: WalkInRequest,
    host_id: str = Depends(require_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    guest = GuestInfo(name=body.guest_name, email=body.guest_email, phone=body.guest_phone)
    try:
        booking = engine.allocator.create_walk_in(body.slot_id, body.party_size, guest, host_id=host_id)
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.post("/bookings/{booking_id}/confirm")
def confirm_booking(
    booking_id: int,
    host_id: str = Depends(require_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.allocator.confirm_booking(booking_id, host_id=host_id)
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.post("/bookings/{booking_id}/check-in")
def check_in(
    booking_id: int,
    host_id: str = Depends(require_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.allocator.check_in(booking_id, host_id=host_id)
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.post("/bookings/{booking_id}/check-out")
def check_out(
    booking_id: int,
    host_id: str = Depends(require_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.allocator.check_out(booking_id, host_id=host_id)
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)


@router.post("/bookings/{booking_id}/no-show")
def mark_no_show(
    booking_id: int,
    host_id: str = Depends(require_host_id),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        booking = engine.allocator.mark_no_show(booking_id, host_id=host_id)
    except BookingEngineError as e:
        raise_http(e)
    return booking_to_dict(booking)
