"""
Centralized constants for scheduler jobs and allocation state machines.

Change job IDs or intervals here instead of scattering literals across main and routes.
Time windows that operators tune per deployment live in app.config.Settings.
"""

# Scheduler job IDs (must match ids used in main.py add_job)
MATERIALIZE_JOB_ID = "materialize_slots"
REAP_JOB_ID = "reap_expired_holds"
REMINDER_JOB_ID = "send_reminders"

MATERIALIZE_INTERVAL_MINUTES = 60
REAP_INTERVAL_MINUTES = 2
REMINDER_INTERVAL_MINUTES = 15

# Slot lifecycle
SLOT_AVAILABLE = "AVAILABLE"
SLOT_FULL = "FULL"
SLOT_CANCELLED = "CANCELLED"

# Booking status
BOOKING_PENDING = "PENDING"
BOOKING_CONFIRMED = "CONFIRMED"
BOOKING_CHECKED_IN = "CHECKED_IN"
BOOKING_COMPLETED = "COMPLETED"
BOOKING_CANCELLED = "CANCELLED"
BOOKING_NO_SHOW = "NO_SHOW"

# Payment status
PAYMENT_PENDING = "PENDING"
PAYMENT_CAPTURED = "CAPTURED"
PAYMENT_FAILED = "FAILED"
PAYMENT_EXPIRED = "EXPIRED"
PAYMENT_FULLY_REFUNDED = "FULLY_REFUNDED"

# A booking still holds seats while its status is one of these.
CAPACITY_HOLDING_STATUSES = (
    BOOKING_PENDING,
    BOOKING_CONFIRMED,
    BOOKING_CHECKED_IN,
    BOOKING_COMPLETED,
    BOOKING_NO_SHOW,
)
# Bookings that may still be cancelled (and release their seats).
RELEASABLE_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED)

# Waitlist status
WAITLIST_ACTIVE = "ACTIVE"
WAITLIST_NOTIFIED = "NOTIFIED"
WAITLIST_EXPIRED = "EXPIRED"
WAITLIST_CONVERTED = "CONVERTED"

# Schedule definition kinds
SCHEDULE_SERVICE_PERIOD = "service_period"
SCHEDULE_RECURRENCE = "recurrence"

# Capacity modes stored on offerings.capacity_mode
CAPACITY_MODE_SIMPLE = "simple"
CAPACITY_MODE_TABLE_BASED = "table_based"

# Cancellation policies
POLICY_FLEXIBLE = "FLEXIBLE"
POLICY_MODERATE = "MODERATE"
POLICY_STRICT = "STRICT"

# booking_modifications.modification_type
MOD_CANCELLATION = "CANCELLATION"
MOD_HOST_CANCELLATION = "HOST_CANCELLATION"
MOD_PAYMENT_FAILED = "PAYMENT_FAILED"
MOD_PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
MOD_PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
MOD_STATUS_CHANGE = "STATUS_CHANGE"
MOD_PARTY_SIZE_INCREASE = "PARTY_SIZE_INCREASE"
MOD_PARTY_SIZE_DECREASE = "PARTY_SIZE_DECREASE"
MOD_DATE_CHANGE = "DATE_CHANGE"

# notification_log.type
NOTIFY_CONFIRMATION = "CONFIRMATION"
NOTIFY_CANCELLATION = "CANCELLATION"
NOTIFY_WAITLIST_AVAILABLE = "WAITLIST_AVAILABLE"
NOTIFY_REMINDER = "REMINDER_24H"

BOOKING_NUMBER_PREFIX = "GT-"
BOOKING_NUMBER_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
BOOKING_NUMBER_LENGTH = 6
