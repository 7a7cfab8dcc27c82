from datetime import timedelta

import pytest
from sqlalchemy import func

from app.core.constants import (
    BOOKING_CANCELLED,
    BOOKING_CHECKED_IN,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_NO_SHOW,
    BOOKING_PENDING,
    CAPACITY_HOLDING_STATUSES,
    MOD_CANCELLATION,
    MOD_HOST_CANCELLATION,
    MOD_PAYMENT_CAPTURED,
    MOD_PAYMENT_FAILED,
    NOTIFY_CONFIRMATION,
    PAYMENT_CAPTURED,
    PAYMENT_FAILED,
    PAYMENT_FULLY_REFUNDED,
    PAYMENT_PENDING,
    POLICY_MODERATE,
    POLICY_STRICT,
)
from app.core.errors import (
    InsufficientCapacity,
    InvalidPartySize,
    InvalidStateTransition,
    ModificationNotAllowed,
    PaymentGatewayError,
    Unauthorized,
)
from app.models.booking import Booking
from app.models.notification_log import NotificationLog
from app.models.slot_instance import SlotInstance
from app.services.allocation import transitions
from app.services.allocation.allocator import GuestInfo, refund_amount_for
from app.services.payments.base import EVENT_PAYMENT_FAILED, EVENT_PAYMENT_SUCCEEDED
from tests.conftest import HOST, NOW, load


def _remaining(session_factory, slot_id):
    return load(session_factory, SlotInstance, slot_id).remaining_capacity


def _held_seats(session_factory, slot_id):
    db = session_factory()
    try:
        return (
            db.query(func.coalesce(func.sum(Booking.party_size), 0))
            .filter(Booking.slot_id == slot_id, Booking.status.in_(CAPACITY_HOLDING_STATUSES))
            .scalar()
        )
    finally:
        db.close()


def _booking_count(session_factory):
    db = session_factory()
    try:
        return db.query(Booking).count()
    finally:
        db.close()


@pytest.fixture
def paid_slot(make_offering, make_slot):
    offering = make_offering(base_price_cents=5000)
    return make_slot(offering.id, capacity=4)


# --- create ---


def test_free_booking_confirms_immediately(booking_engine, session_factory, notifier, make_offering, make_slot, guest):
    slot = make_slot(make_offering().id, capacity=4)
    booking = booking_engine.create_booking(slot.id, 3, guest, now=NOW)

    assert booking.status == BOOKING_CONFIRMED
    assert booking.payment_status == PAYMENT_CAPTURED
    assert booking.booking_number.startswith("GT-")
    assert _remaining(session_factory, slot.id) == 1
    assert [to for to, _, _ in notifier.sent] == ["ada@example.com"]
    assert load(session_factory, Booking, booking.id).confirmation_sent


def test_insufficient_capacity_creates_nothing(booking_engine, session_factory, make_offering, make_slot, guest):
    slot = make_slot(make_offering().id, capacity=2)
    with pytest.raises(InsufficientCapacity) as exc:
        booking_engine.create_booking(slot.id, 3, guest)
    assert exc.value.available == 2
    assert _booking_count(session_factory) == 0
    assert _remaining(session_factory, slot.id) == 2


def test_party_bounds(booking_engine, make_offering, make_slot, guest):
    slot = make_slot(make_offering(min_party_size=2, max_party_size=4).id, capacity=10)
    with pytest.raises(InvalidPartySize):
        booking_engine.create_booking(slot.id, 5, guest)
    with pytest.raises(InvalidPartySize):
        booking_engine.create_booking(slot.id, 1, guest)


def test_paid_booking_waits_for_webhook(booking_engine, session_factory, gateway, paid_slot, guest):
    booking = booking_engine.create_booking(paid_slot.id, 2, guest, "pm_card_visa", now=NOW)

    assert booking.status == BOOKING_PENDING
    assert booking.payment_intent_id == "pi_test_1"
    assert gateway.charges[0]["amount"] == 10000
    assert gateway.charges[0]["metadata"]["booking_number"] == booking.booking_number
    assert _remaining(session_factory, paid_slot.id) == 2

    confirmed = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, "pi_test_1")
    assert confirmed.status == BOOKING_CONFIRMED
    assert confirmed.payment_status == PAYMENT_CAPTURED

    # Redelivery changes nothing.
    again = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, "pi_test_1")
    assert again.status == BOOKING_CONFIRMED
    mods = booking_engine.allocator.list_modifications(booking.id)
    assert [m.modification_type for m in mods] == [MOD_PAYMENT_CAPTURED]
    assert gateway.refunds == []
    assert _remaining(session_factory, paid_slot.id) == 2


def test_synchronous_capture_confirms(booking_engine, gateway, paid_slot, guest):
    gateway.immediate = True
    booking = booking_engine.create_booking(paid_slot.id, 1, guest, "pm_card_visa")
    assert booking.status == BOOKING_CONFIRMED
    assert booking.payment_status == PAYMENT_CAPTURED


def test_declined_charge_releases_seats(booking_engine, session_factory, gateway, paid_slot, guest):
    gateway.error = PaymentGatewayError("Your card was declined.", definitive=True)
    with pytest.raises(PaymentGatewayError) as exc:
        booking_engine.create_booking(paid_slot.id, 3, guest, "pm_card_chargeDeclined")

    booking = booking_engine.allocator.get_booking(exc.value.booking_number)
    assert booking.status == BOOKING_CANCELLED
    assert booking.payment_status == PAYMENT_FAILED
    assert _remaining(session_factory, paid_slot.id) == 4
    mods = booking_engine.allocator.list_modifications(booking.id)
    assert [m.modification_type for m in mods] == [MOD_PAYMENT_FAILED]


def test_ambiguous_charge_keeps_booking_pending(booking_engine, session_factory, gateway, paid_slot, guest):
    gateway.error = PaymentGatewayError("timeout", definitive=False)
    booking = booking_engine.create_booking(paid_slot.id, 2, guest, "pm_card_visa")
    assert booking.status == BOOKING_PENDING
    assert booking.payment_intent_id is None
    assert _remaining(session_factory, paid_slot.id) == 2

    # The webhook can still find it by booking number.
    settled = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, "pi_late", booking.booking_number)
    assert settled.status == BOOKING_CONFIRMED
    assert settled.payment_intent_id == "pi_late"


def test_paid_booking_requires_payment_method(booking_engine, session_factory, paid_slot, guest):
    with pytest.raises(PaymentGatewayError) as exc:
        booking_engine.create_booking(paid_slot.id, 1, guest)
    assert exc.value.definitive
    assert _booking_count(session_factory) == 0
    assert _remaining(session_factory, paid_slot.id) == 4


def test_payment_failure_webhook_releases_once(booking_engine, session_factory, paid_slot, guest):
    booking = booking_engine.create_booking(paid_slot.id, 2, guest, "pm_card_visa")
    failed = booking_engine.handle_gateway_event(EVENT_PAYMENT_FAILED, booking.payment_intent_id)
    assert failed.status == BOOKING_CANCELLED
    assert failed.payment_status == PAYMENT_FAILED
    assert _remaining(session_factory, paid_slot.id) == 4

    again = booking_engine.handle_gateway_event(EVENT_PAYMENT_FAILED, booking.payment_intent_id)
    assert again.status == BOOKING_CANCELLED
    assert _remaining(session_factory, paid_slot.id) == 4


def test_success_after_failure_is_refunded(booking_engine, session_factory, gateway, paid_slot, guest):
    booking = booking_engine.create_booking(paid_slot.id, 2, guest, "pm_card_visa")
    booking_engine.handle_gateway_event(EVENT_PAYMENT_FAILED, booking.payment_intent_id)

    late = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, booking.payment_intent_id)
    assert late.status == BOOKING_CANCELLED
    assert late.payment_status == PAYMENT_FULLY_REFUNDED
    assert gateway.refunds == [(booking.payment_intent_id, 10000)]
    assert _remaining(session_factory, paid_slot.id) == 4

    # A second late delivery does not refund twice.
    booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, booking.payment_intent_id)
    assert len(gateway.refunds) == 1


def test_unknown_intent_is_ignored(booking_engine):
    assert booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, "pi_unknown") is None
    assert booking_engine.handle_gateway_event("charge.refunded", "pi_unknown") is None


# --- cancel ---


def test_cancel_refunds_in_full_before_window(booking_engine, session_factory, gateway, paid_slot, guest):
    gateway.immediate = True
    booking = booking_engine.create_booking(paid_slot.id, 2, guest, "pm_card_visa", now=NOW)

    cancelled = booking_engine.cancel_booking(booking.id, "plans changed", now=NOW)
    assert cancelled.status == BOOKING_CANCELLED
    assert cancelled.payment_status == PAYMENT_FULLY_REFUNDED
    assert cancelled.refunded_amount_cents == 10000
    assert gateway.refunds == [("pi_test_1", 10000)]
    assert _remaining(session_factory, paid_slot.id) == 4

    mod = booking_engine.allocator.list_modifications(booking.id)[-1]
    assert mod.modification_type == MOD_CANCELLATION
    assert mod.refund_status == "COMPLETED"

    with pytest.raises(InvalidStateTransition):
        booking_engine.cancel_booking(booking.id, now=NOW)
    assert _remaining(session_factory, paid_slot.id) == 4


def test_moderate_policy_refunds_half_inside_a_week(
    booking_engine, session_factory, gateway, make_offering, make_slot, guest
):
    offering = make_offering(base_price_cents=3000, cancellation_policy=POLICY_MODERATE)
    slot = make_slot(offering.id, start_at=NOW + timedelta(days=3))
    gateway.immediate = True
    booking = booking_engine.create_booking(slot.id, 1, guest, "pm_card_visa", now=NOW)

    cancelled = booking_engine.cancel_booking(booking.id, now=NOW)
    assert cancelled.refunded_amount_cents == 1500
    assert cancelled.payment_status == PAYMENT_CAPTURED


def test_failed_refund_keeps_cancellation(booking_engine, session_factory, gateway, paid_slot, guest):
    gateway.immediate = True
    booking = booking_engine.create_booking(paid_slot.id, 1, guest, "pm_card_visa", now=NOW)
    gateway.refund_error = PaymentGatewayError("refund failed")

    cancelled = booking_engine.cancel_booking(booking.id, now=NOW)
    assert cancelled.status == BOOKING_CANCELLED
    assert cancelled.refunded_amount_cents == 0
    assert booking_engine.allocator.list_modifications(booking.id)[-1].refund_status == "FAILED"
    assert _remaining(session_factory, paid_slot.id) == 4


def test_host_cancel_refunds_in_full_under_strict_policy(
    booking_engine, gateway, make_offering, make_slot, guest
):
    offering = make_offering(base_price_cents=2000, cancellation_policy=POLICY_STRICT)
    slot = make_slot(offering.id, start_at=NOW + timedelta(days=2))
    gateway.immediate = True
    booking = booking_engine.create_booking(slot.id, 2, guest, "pm_card_visa", now=NOW)

    with pytest.raises(Unauthorized):
        booking_engine.cancel_booking(booking.id, cancelled_by="host", host_id="someone-else", now=NOW)

    cancelled = booking_engine.cancel_booking(booking.id, "kitchen closed", cancelled_by="host", host_id=HOST, now=NOW)
    assert cancelled.refunded_amount_cents == 4000
    mod = booking_engine.allocator.list_modifications(booking.id)[-1]
    assert mod.modification_type == MOD_HOST_CANCELLATION
    assert mod.modified_by == HOST


def test_cancel_pending_booking_then_late_success_refunds(booking_engine, gateway, paid_slot, guest):
    booking = booking_engine.create_booking(paid_slot.id, 1, guest, "pm_card_visa", now=NOW)
    cancelled = booking_engine.cancel_booking(booking.id, now=NOW)
    assert gateway.refunds == []
    assert cancelled.payment_status == PAYMENT_PENDING

    late = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, booking.payment_intent_id)
    assert late.payment_status == PAYMENT_FULLY_REFUNDED
    assert gateway.refunds == [(booking.payment_intent_id, 5000)]


@pytest.mark.parametrize(
    "policy,hours,expected",
    [
        ("FLEXIBLE", 24, 10000),
        ("FLEXIBLE", 23.9, 0),
        ("MODERATE", 168, 10000),
        ("MODERATE", 48, 5000),
        ("MODERATE", 12, 0),
        ("STRICT", 336, 10000),
        ("STRICT", 335, 0),
        ("UNKNOWN", 1000, 0),
    ],
)
def test_refund_amount_for(policy, hours, expected):
    assert refund_amount_for(policy, 10000, hours) == expected


def test_refund_amount_for_host_and_free():
    assert refund_amount_for("STRICT", 10000, 1, cancelled_by="host") == 10000
    assert refund_amount_for("FLEXIBLE", 0, 100) == 0


# --- host actions ---


def test_host_status_transitions(booking_engine, session_factory, paid_slot, guest):
    booking = booking_engine.create_booking(paid_slot.id, 2, guest, "pm_card_visa", now=NOW)
    allocator = booking_engine.allocator

    assert allocator.confirm_booking(booking.id, host_id=HOST).status == BOOKING_CONFIRMED
    assert allocator.check_in(booking.id, host_id=HOST, now=NOW).status == BOOKING_CHECKED_IN
    done = allocator.check_out(booking.id, host_id=HOST, now=NOW + timedelta(hours=2))
    assert done.status == BOOKING_COMPLETED
    assert done.checked_out_at == NOW + timedelta(hours=2)

    with pytest.raises(InvalidStateTransition):
        allocator.check_out(booking.id, host_id=HOST)
    with pytest.raises(InvalidStateTransition):
        allocator.mark_no_show(booking.id, host_id=HOST)
    with pytest.raises(InvalidStateTransition):
        booking_engine.cancel_booking(booking.id)
    # Completed bookings keep their seats.
    assert _remaining(session_factory, paid_slot.id) == 2


def test_host_actions_check_ownership(booking_engine, make_offering, make_slot, guest):
    slot = make_slot(make_offering().id)
    booking = booking_engine.create_booking(slot.id, 1, guest)
    with pytest.raises(Unauthorized):
        booking_engine.allocator.check_in(booking.id, host_id="intruder")


def test_no_show_keeps_capacity(booking_engine, session_factory, make_offering, make_slot, guest):
    slot = make_slot(make_offering().id, capacity=4)
    booking = booking_engine.create_booking(slot.id, 2, guest)
    assert booking_engine.allocator.mark_no_show(booking.id, host_id=HOST).status == BOOKING_NO_SHOW
    assert _remaining(session_factory, slot.id) == 2


def test_payment_success_after_host_confirm(booking_engine, paid_slot, guest):
    booking = booking_engine.create_booking(paid_slot.id, 1, guest, "pm_card_visa")
    booking_engine.allocator.confirm_booking(booking.id, host_id=HOST)
    settled = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, booking.payment_intent_id)
    assert settled.status == BOOKING_CONFIRMED
    assert settled.payment_status == PAYMENT_CAPTURED


def test_walk_in(booking_engine, session_factory, make_offering, make_slot):
    slot = make_slot(make_offering(base_price_cents=5000).id, capacity=4)
    walk_in = booking_engine.allocator.create_walk_in(slot.id, 3, GuestInfo(name="", email=""), host_id=HOST, now=NOW)
    assert walk_in.status == BOOKING_CHECKED_IN
    assert walk_in.is_walk_in
    assert walk_in.total_amount_cents == 0
    assert walk_in.guest_name == "Walk-in"
    assert _remaining(session_factory, slot.id) == 1

    with pytest.raises(Unauthorized):
        booking_engine.allocator.create_walk_in(slot.id, 1, GuestInfo(name="x", email=""), host_id="other")
    with pytest.raises(InsufficientCapacity):
        booking_engine.allocator.create_walk_in(slot.id, 2, GuestInfo(name="x", email=""), host_id=HOST)


# --- conservation ---


def test_capacity_is_conserved_across_operations(booking_engine, session_factory, gateway, make_offering, make_slot):
    offering = make_offering(base_price_cents=1000)
    slot = make_slot(offering.id, capacity=10)
    guests = [GuestInfo(name=f"G{i}", email=f"g{i}@example.com") for i in range(5)]

    gateway.immediate = True
    a = booking_engine.create_booking(slot.id, 2, guests[0], "pm", now=NOW)
    gateway.immediate = False
    b = booking_engine.create_booking(slot.id, 3, guests[1], "pm", now=NOW)
    gateway.error = PaymentGatewayError("declined", definitive=True)
    with pytest.raises(PaymentGatewayError):
        booking_engine.create_booking(slot.id, 1, guests[2], "pm", now=NOW)
    c = booking_engine.allocator.create_walk_in(slot.id, 1, guests[3], host_id=HOST)
    booking_engine.cancel_booking(a.id, now=NOW)
    booking_engine.handle_gateway_event(EVENT_PAYMENT_FAILED, b.payment_intent_id)
    booking_engine.allocator.check_out(c.id, host_id=HOST)

    row = load(session_factory, SlotInstance, slot.id)
    assert row.total_capacity - row.remaining_capacity == _held_seats(session_factory, slot.id) == 1


def test_notifications_are_logged(booking_engine, session_factory, make_offering, make_slot, guest):
    slot = make_slot(make_offering().id)
    booking = booking_engine.create_booking(slot.id, 1, guest)
    db = session_factory()
    try:
        rows = db.query(NotificationLog).filter(NotificationLog.booking_id == booking.id).all()
    finally:
        db.close()
    assert [(r.type, r.status) for r in rows] == [(NOTIFY_CONFIRMATION, "SENT")]


# --- modifications against in-flight state ---


def test_cancel_releases_seats_added_by_concurrent_party_change(
    booking_engine, session_factory, monkeypatch, make_offering, make_slot, guest
):
    slot = make_slot(make_offering().id, capacity=6)
    booking = booking_engine.create_booking(slot.id, 2, guest, now=NOW)
    original = transitions.transition
    changed = []

    # Party size grows after the cancel has read the booking but before its status flip.
    def transition_after_party_change(*args, **kwargs):
        if not changed:
            changed.append(True)
            booking_engine.allocator.modify_party_size(booking.id, 4, now=NOW)
        return original(*args, **kwargs)

    monkeypatch.setattr(transitions, "transition", transition_after_party_change)
    cancelled = booking_engine.cancel_booking(booking.id, now=NOW)

    assert changed
    assert cancelled.status == BOOKING_CANCELLED
    assert cancelled.party_size == 4
    assert _held_seats(session_factory, slot.id) == 0
    assert _remaining(session_factory, slot.id) == 6


def test_party_change_waits_for_pending_payment(booking_engine, session_factory, gateway, make_offering, make_slot, guest):
    slot = make_slot(make_offering(base_price_cents=1000).id, capacity=6)
    booking = booking_engine.create_booking(slot.id, 2, guest, "pm_card_visa", now=NOW)

    with pytest.raises(ModificationNotAllowed):
        booking_engine.allocator.modify_party_size(booking.id, 4, now=NOW)
    pending = load(session_factory, Booking, booking.id)
    assert (pending.party_size, pending.total_amount_cents) == (2, 2000)
    assert _remaining(session_factory, slot.id) == 4

    confirmed = booking_engine.handle_gateway_event(EVENT_PAYMENT_SUCCEEDED, booking.payment_intent_id)
    assert confirmed.total_amount_cents == gateway.charges[0]["amount"] == 2000

    bigger = booking_engine.allocator.modify_party_size(booking.id, 4, now=NOW)
    assert bigger.total_amount_cents == 4000
    assert sum(c["amount"] for c in gateway.charges) == 4000
    assert _remaining(session_factory, slot.id) == 2
