from datetime import datetime

import pytest

from salonbook.domain.scheduling.appointment_service import AppointmentService
from salonbook.domain.scheduling.exceptions import InvalidTransition, ResourceNotFound
from salonbook.domain.scheduling.hold_service import HoldService
from salonbook.models import Appointment, SlotClaim

from .conftest import NOW, TARGET


@pytest.fixture
def holds(db, bridge, clock):
    return HoldService(db, bridge=bridge, clock=clock)


@pytest.fixture
def appointments(db, bridge, clock):
    return AppointmentService(db, bridge=bridge, clock=clock)


def book(holds, seed, hhmm, owner="guest-a", staff_id=None):
    hold = holds.create_hold(seed.tenant_id, staff_id or seed.anna_id, seed.haircut_id, TARGET, hhmm, owner)
    return holds.confirm_hold(hold.id, {"email": f"{owner}@example.com"})


def test_cancel_frees_the_window(holds, appointments, db, seed, bridge):
    appointment = book(holds, seed, "10:00")

    cancelled = appointments.update_status(seed.tenant_id, appointment.id, "cancelled")

    assert cancelled.status == "cancelled"
    assert db.query(SlotClaim).count() == 0
    assert (seed.tenant_id, TARGET, "booking_cancelled") in [s[:3] for s in bridge.signals]
    rebooked = holds.create_hold(seed.tenant_id, seed.anna_id, seed.haircut_id, TARGET, "10:00", "guest-b")
    assert rebooked.slot_time == "10:00"


def test_complete_keeps_claims(holds, appointments, db, seed):
    appointment = book(holds, seed, "10:00")

    completed = appointments.update_status(seed.tenant_id, appointment.id, "completed")

    assert completed.status == "completed"
    assert db.query(SlotClaim).count() == 6


@pytest.mark.parametrize("terminal", ["completed", "no_show", "cancelled"])
def test_terminal_statuses_cannot_change(holds, appointments, seed, terminal):
    appointment = book(holds, seed, "10:00")
    appointments.update_status(seed.tenant_id, appointment.id, terminal)

    with pytest.raises(InvalidTransition):
        appointments.update_status(seed.tenant_id, appointment.id, "confirmed")


def test_same_status_is_a_no_op(holds, appointments, seed):
    appointment = book(holds, seed, "10:00")

    assert appointments.update_status(seed.tenant_id, appointment.id, "confirmed").status == "confirmed"


def test_unknown_appointment(appointments, seed):
    with pytest.raises(ResourceNotFound):
        appointments.update_status(seed.tenant_id, 9999, "cancelled")


def test_other_tenants_appointment_is_not_found(holds, appointments, seed):
    appointment = book(holds, seed, "10:00")

    with pytest.raises(ResourceNotFound):
        appointments.mark_paid(seed.tenant_id + 1, appointment.id)


def test_mark_paid(holds, appointments, seed):
    appointment = book(holds, seed, "10:00")

    paid = appointments.mark_paid(seed.tenant_id, appointment.id)

    assert paid.is_paid is True
    assert paid.paid_at == NOW


def test_cancelled_appointment_cannot_be_paid(holds, appointments, seed):
    appointment = book(holds, seed, "10:00")
    appointments.update_status(seed.tenant_id, appointment.id, "cancelled")

    with pytest.raises(InvalidTransition):
        appointments.mark_paid(seed.tenant_id, appointment.id)


def test_day_calendar_lays_out_each_staff_lane(holds, appointments, db, seed):
    book(holds, seed, "10:00", owner="guest-a")
    # Overlapping row written by another flow (walk-in entered by the salon)
    db.add(
        Appointment(
            tenant_id=seed.tenant_id,
            staff_id=seed.anna_id,
            service_id=seed.haircut_id,
            scheduled_at=datetime(2030, 1, 8, 10, 15),
            duration_minutes=30,
        )
    )
    db.commit()
    holds.create_hold(seed.tenant_id, seed.bram_id, seed.haircut_id, TARGET, "11:00", "guest-b")

    lanes = appointments.build_day_calendar(seed.tenant_id, TARGET)

    anna = lanes[seed.anna_id]
    assert [(r.item.kind, r.column, r.total_columns, r.width_percent) for r in anna] == [
        ("appointment", 0, 2, 50),
        ("appointment", 1, 2, 50),
    ]
    assert anna[0].item.title == "Haircut"
    bram = lanes[seed.bram_id]
    assert [(r.item.kind, r.column, r.total_columns) for r in bram] == [("hold", 0, 1)]


def test_day_calendar_skips_expired_holds_and_cancellations(holds, appointments, seed, clock):
    appointment = book(holds, seed, "10:00")
    appointments.update_status(seed.tenant_id, appointment.id, "cancelled")
    holds.create_hold(seed.tenant_id, seed.bram_id, seed.haircut_id, TARGET, "11:00", "guest-b")
    clock.advance(minutes=6)

    lanes = appointments.build_day_calendar(seed.tenant_id, TARGET, staff_id=seed.anna_id)

    assert lanes == {seed.anna_id: []}
