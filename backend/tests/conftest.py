import json
from datetime import datetime, time, timedelta

import pytest

import app.models  # noqa: F401
from app.core.errors import PaymentGatewayError
from app.db.base import Base
from app.db.session import make_engine, make_session_factory, session_scope
from app.models.dining_table import DiningTable
from app.models.offering import Offering
from app.models.schedule_definition import ScheduleDefinition
from app.models.slot_instance import SlotInstance
from app.services.allocation.allocator import GuestInfo
from app.services.allocation.engine import BookingEngine
from app.services.payments.base import ChargeResult, RefundResult

# Monday. Fixed clock for tests that pass now= explicitly.
NOW = datetime(2030, 3, 4, 12, 0)
HOST = "host-1"


class FakeGateway:
    """Records calls. Set `error` to make the next charge raise, `immediate` for synchronous capture."""

    def __init__(self):
        self.charges: list[dict] = []
        self.refunds: list[tuple[str, int | None]] = []
        self.error: PaymentGatewayError | None = None
        self.refund_error: PaymentGatewayError | None = None
        self.immediate = False

    def charge(self, payment_method, amount_cents, *, currency, metadata=None):
        if self.error is not None:
            err, self.error = self.error, None
            raise err
        intent_id = f"pi_test_{len(self.charges) + 1}"
        self.charges.append(
            {"intent_id": intent_id, "payment_method": payment_method, "amount": amount_cents, "metadata": metadata or {}}
        )
        return ChargeResult(intent_id=intent_id, succeeded=self.immediate, status="succeeded" if self.immediate else "processing")

    def refund(self, intent_id, amount_cents=None):
        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append((intent_id, amount_cents))
        return RefundResult(refund_id=f"re_{len(self.refunds)}", status="succeeded")

    def parse_event(self, payload, signature):
        if signature != "valid":
            raise ValueError("bad signature")
        event = json.loads(payload)
        obj = event["data"]["object"]
        return event["type"], obj["id"], (obj.get("metadata") or {}).get("booking_number")


class FakeNotifier:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.configured = True
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to, subject, body):
        self.sent.append((to, subject, body))
        return self.ok


@pytest.fixture
def db_engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def booking_engine(session_factory, gateway, notifier):
    return BookingEngine(session_factory, gateway, notifier)


@pytest.fixture
def make_offering(session_factory):
    counter = {"n": 0}

    def _make(tables: tuple[int, ...] = (), **kw) -> Offering:
        counter["n"] += 1
        values = {
            "host_id": HOST,
            "name": f"Offering {counter['n']}",
            "slug": f"offering-{counter['n']}",
            "base_price_cents": 0,
        }
        values.update(kw)
        with session_scope(session_factory) as db:
            offering = Offering(**values)
            db.add(offering)
            db.flush()
            for i, seats in enumerate(tables, start=1):
                db.add(DiningTable(offering_id=offering.id, table_number=f"T{i}", capacity=seats))
        return offering

    return _make


@pytest.fixture
def make_slot(session_factory):
    def _make(
        offering_id: int,
        capacity: int = 4,
        start_at: datetime | None = None,
        remaining: int | None = None,
        **kw,
    ) -> SlotInstance:
        start_at = start_at or NOW + timedelta(days=10)
        with session_scope(session_factory) as db:
            slot = SlotInstance(
                offering_id=offering_id,
                slot_date=start_at.date(),
                start_at=start_at,
                end_at=start_at + timedelta(hours=2),
                total_capacity=capacity,
                remaining_capacity=capacity if remaining is None else remaining,
                **kw,
            )
            db.add(slot)
            db.flush()
        return slot

    return _make


@pytest.fixture
def make_definition(session_factory):
    def _make(offering_id: int, **kw) -> ScheduleDefinition:
        values = {
            "offering_id": offering_id,
            "kind": "service_period",
            "max_per_slot": 10,
            "days_of_week": [0, 1, 2, 3, 4, 5, 6],
            "start_time": time(18, 0),
            "end_time": time(20, 0),
            "interval_minutes": 30,
        }
        values.update(kw)
        with session_scope(session_factory) as db:
            definition = ScheduleDefinition(**values)
            db.add(definition)
            db.flush()
        return definition

    return _make


@pytest.fixture
def guest():
    return GuestInfo(name="Ada Guest", email="ada@example.com", phone="555-0100")


def load(session_factory, model, pk):
    db = session_factory()
    try:
        return db.get(model, pk)
    finally:
        db.close()
