from app.models.booking import Booking
from app.models.booking_hold import BookingHold
from app.models.booking_modification import BookingModification
from app.models.dining_table import DiningTable
from app.models.notification_log import NotificationLog
from app.models.offering import Offering
from app.models.schedule_definition import ScheduleDefinition
from app.models.slot_instance import SlotInstance
from app.models.waitlist_entry import WaitlistEntry

__all__ = [
    "Booking",
    "BookingHold",
    "BookingModification",
    "DiningTable",
    "NotificationLog",
    "Offering",
    "ScheduleDefinition",
    "SlotInstance",
    "WaitlistEntry",
]
