from app.models.booking import Booking
from app.models.booking_hold import BookingHold
from app.models.offering import Offering
from app.scheduler import materialize_job, reap_job, reminder_job
from app.services.admin_service import clear_transient, reset_all
from tests.conftest import NOW


def _count(session_factory, model):
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


def test_clear_transient_keeps_bookings(booking_engine, session_factory, make_offering, make_slot, guest):
    slot = make_slot(make_offering().id)
    booking_engine.create_hold(slot.id, 1, "sess-a", now=NOW)
    booking_engine.create_booking(slot.id, 1, guest, now=NOW)

    db = session_factory()
    try:
        deleted = clear_transient(db)
    finally:
        db.close()
    assert deleted == {"booking_holds": 1}
    assert _count(session_factory, Booking) == 1


def test_reset_all(booking_engine, session_factory, make_offering, make_slot, guest):
    slot = make_slot(make_offering(tables=(2, 2)).id)
    booking_engine.create_booking(slot.id, 1, guest, now=NOW)
    db = session_factory()
    try:
        deleted = reset_all(db)
    finally:
        db.close()
    assert deleted["bookings"] == 1
    assert deleted["dining_tables"] == 2
    assert _count(session_factory, Offering) == 0
    assert _count(session_factory, BookingHold) == 0


def test_jobs_run_through_engine(monkeypatch, booking_engine):
    for module in (materialize_job, reap_job, reminder_job):
        monkeypatch.setattr(module, "build_engine", lambda: booking_engine)
    assert materialize_job.run_materialize_job() == {"definitions": 0, "created": 0, "failed": []}
    assert reap_job.run_reap_job()["bookings_expired"] == 0
    assert reminder_job.run_reminder_job() == {"due": 0, "sent": 0, "failed": 0}


def test_job_failure_is_logged_not_raised(monkeypatch, caplog):
    def broken():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(reap_job, "build_engine", broken)
    assert reap_job.run_reap_job() is None
    assert "Reap job failed" in caplog.text
