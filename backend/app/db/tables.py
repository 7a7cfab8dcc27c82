"""
Single source of truth for database tables created by migration 001.

Use these names when writing raw SQL (e.g. TRUNCATE). Order is child-first so
truncation respects foreign keys.
"""
ALL_TABLE_NAMES = (
    "notification_log",
    "booking_modifications",
    "waitlist_entries",
    "booking_holds",
    "bookings",
    "slot_instances",
    "schedule_definitions",
    "dining_tables",
    "offerings",
)

# Rows that only exist for in-flight checkouts; safe to clear on reset.
TRANSIENT_TABLE_NAMES = ("booking_holds",)
