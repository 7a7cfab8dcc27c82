"""
Centralized error taxonomy for the allocation core, plus the mapping to HTTP errors.

Services raise these; routes stay thin and call engine_error_to_http.
"""
from __future__ import annotations

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Engine errors
# ---------------------------------------------------------------------------


class BookingEngineError(Exception):
    """Base class for everything the allocation core raises on purpose."""


class InsufficientCapacity(BookingEngineError):
    """Reservation attempted against a slot with too little remaining capacity."""

    def __init__(self, slot_id: int, requested: int, available: int):
        self.slot_id = slot_id
        self.requested = requested
        self.available = available
        if available <= 0:
            msg = "This time slot is full"
        else:
            msg = f"Only {available} spots available"
        super().__init__(msg)


class SlotNotFound(BookingEngineError):
    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        super().__init__(f"Slot {slot_id} not found")


class SlotUnavailable(BookingEngineError):
    """Slot exists but is cancelled."""

    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        super().__init__(f"Slot {slot_id} has been cancelled")


class ScheduleDefinitionNotFound(BookingEngineError):
    def __init__(self, definition_id: int):
        self.definition_id = definition_id
        super().__init__(f"Schedule definition {definition_id} not found")


class OfferingNotFound(BookingEngineError):
    def __init__(self, offering_id: int):
        self.offering_id = offering_id
        super().__init__(f"Offering {offering_id} not found")


class BookingNotFound(BookingEngineError):
    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Booking {ref} not found")


class WaitlistEntryNotFound(BookingEngineError):
    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Waitlist entry {entry_id} not found")


class InvalidPartySize(BookingEngineError):
    pass


class AlreadyOnWaitlist(BookingEngineError):
    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        super().__init__("You are already on the waitlist for this time slot")


class ModificationNotAllowed(BookingEngineError):
    pass


class InvalidStateTransition(BookingEngineError):
    def __init__(self, booking_id: int, current: str, target: str):
        self.booking_id = booking_id
        self.current = current
        self.target = target
        super().__init__(f"Booking {booking_id} cannot move from {current} to {target}")


class Unauthorized(BookingEngineError):
    pass


class PaymentGatewayError(BookingEngineError):
    """Gateway call failed. definitive=True means the charge did not and will not happen."""

    def __init__(self, message: str, *, definitive: bool = False, booking_number: str | None = None):
        self.definitive = definitive
        self.booking_number = booking_number
        super().__init__(message)


class DoubleReleaseGuard(BookingEngineError):
    """Release attempted on a booking no longer holding capacity. Callers log and skip."""

    def __init__(self, booking_id: int, status: str | None):
        self.booking_id = booking_id
        self.status = status
        super().__init__(f"Booking {booking_id} is not releasable (status={status})")


class RecurrenceExpansionError(BookingEngineError):
    pass


class InvalidScheduleDefinition(BookingEngineError):
    pass


# ---------------------------------------------------------------------------
# HTTP mapping: (exception types, status_code). First match wins.
# Add new rules here instead of scattering checks in routes.
# ---------------------------------------------------------------------------

STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_UNPROCESSABLE = 422
STATUS_FORBIDDEN = 403
STATUS_PAYMENT_REQUIRED = 402
STATUS_BAD_GATEWAY = 502

ENGINE_ERROR_RULES: list[tuple[tuple[type[BookingEngineError], ...], int]] = [
    (
        (
            SlotNotFound,
            ScheduleDefinitionNotFound,
            OfferingNotFound,
            BookingNotFound,
            WaitlistEntryNotFound,
        ),
        STATUS_NOT_FOUND,
    ),
    (
        (
            InsufficientCapacity,
            SlotUnavailable,
            AlreadyOnWaitlist,
            InvalidStateTransition,
            DoubleReleaseGuard,
        ),
        STATUS_CONFLICT,
    ),
    (
        (
            InvalidPartySize,
            ModificationNotAllowed,
            InvalidScheduleDefinition,
            RecurrenceExpansionError,
        ),
        STATUS_UNPROCESSABLE,
    ),
    ((Unauthorized,), STATUS_FORBIDDEN),
]


def engine_error_to_http(exc: BookingEngineError) -> HTTPException:
    """
    Map an engine exception into an HTTPException.
    Capacity errors carry the remaining spots so the client can offer the waitlist.
    """
    if isinstance(exc, PaymentGatewayError):
        status_code = STATUS_PAYMENT_REQUIRED if exc.definitive else STATUS_BAD_GATEWAY
        return HTTPException(status_code=status_code, detail=str(exc))
    for types, status_code in ENGINE_ERROR_RULES:
        if isinstance(exc, types):
            detail: str | dict = str(exc)
            if isinstance(exc, InsufficientCapacity):
                detail = {"error": str(exc), "available": exc.available, "waitlist": True}
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=500, detail=str(exc))
