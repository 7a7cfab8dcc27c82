from app.services.allocation.allocator import BookingAllocator, GuestInfo, refund_amount_for
from app.services.allocation.capacity_mode import CapacityMode, Simple, TableBased, capacity_mode_for
from app.services.allocation.engine import BookingEngine, build_engine
from app.services.allocation.ledger import CapacityLedger
from app.services.allocation.materializer import SlotMaterializer
from app.services.allocation.reaper import HoldReaper
from app.services.allocation.recurrence import RecurrenceRule, expand
from app.services.allocation.waitlist import WaitlistPromoter

__all__ = [
    "BookingAllocator",
    "BookingEngine",
    "CapacityLedger",
    "CapacityMode",
    "GuestInfo",
    "HoldReaper",
    "RecurrenceRule",
    "Simple",
    "SlotMaterializer",
    "TableBased",
    "WaitlistPromoter",
    "build_engine",
    "capacity_mode_for",
    "expand",
    "refund_amount_for",
]
