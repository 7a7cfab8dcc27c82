"""
Stripe webhook: verify the signature, then settle the booking behind the PaymentIntent.
Returns 200 for every verified event (Stripe retries anything else).
"""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_engine
from app.services.allocation.engine import BookingEngine

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    engine: BookingEngine = Depends(get_engine),
) -> dict[str, object]:
    payload = await request.body()
    try:
        event_type, intent_id, booking_number = engine.gateway.parse_event(payload, stripe_signature or "")
    except ValueError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(status_code=400, detail=f"Webhook Error: {e}") from e
    booking = await run_in_threadpool(engine.handle_gateway_event, event_type, intent_id, booking_number)
    return {
        "received": True,
        "type": event_type,
        "booking_number": booking.booking_number if booking else None,
        "status": booking.status if booking else None,
    }
