from __future__ import annotations

import threading

import pytest
from sqlalchemy.exc import IntegrityError

from bookmycare.errors import IllegalTransition, InvalidStatus, NotFound, SlotTaken
from bookmycare.models import Appointment, AppointmentStatus, Payment, PaymentStatus
from bookmycare.services import BookingEngine


def test_book_returns_pending_appointment(booking, make_patient, make_doctor):
    pid = make_patient()
    _, doc_id = make_doctor()

    aid = booking.book_appointment(pid, doc_id, "2024-06-01", "10:00")

    a = booking.get_appointment(aid)
    assert a["status"] == "pending"
    assert (a["patient_id"], a["doctor_id"], a["date"], a["time"]) == (pid, doc_id, "2024-06-01", "10:00")
    assert a["notes"] is None


def test_same_slot_twice_is_rejected(booking, make_patient, make_doctor):
    pid = make_patient()
    other = make_patient("Olga", "olga@example.com")
    _, doc_id = make_doctor()

    booking.book_appointment(pid, doc_id, "2024-06-01", "10:00")
    with pytest.raises(SlotTaken) as exc:
        booking.book_appointment(other, doc_id, "2024-06-01", "10:00")
    assert exc.value.message == "This slot is already booked."


def test_same_time_other_doctor_or_time_is_fine(booking, make_patient, make_doctor):
    pid = make_patient()
    _, doc_a = make_doctor()
    _, doc_b = make_doctor("Bob", "bob@doc.com")

    booking.book_appointment(pid, doc_a, "2024-06-01", "10:00")
    booking.book_appointment(pid, doc_b, "2024-06-01", "10:00")
    booking.book_appointment(pid, doc_a, "2024-06-01", "10:30")
    booking.book_appointment(pid, doc_a, "2024-06-02", "10:00")


def test_cancelled_slot_can_be_rebooked(booking, make_patient, make_doctor):
    pid = make_patient()
    _, doc_id = make_doctor()

    first = booking.book_appointment(pid, doc_id, "2024-06-01", "10:00")
    booking.update_status(first, "cancelled")
    second = booking.book_appointment(pid, doc_id, "2024-06-01", "10:00")

    assert second != first
    assert booking.get_appointment(second)["status"] == "pending"


def test_reactivating_cancelled_appointment_on_taken_slot(booking, make_patient, make_doctor):
    pid = make_patient()
    _, doc_id = make_doctor()

    first = booking.book_appointment(pid, doc_id, "2024-06-01", "10:00")
    booking.update_status(first, "cancelled")
    booking.book_appointment(pid, doc_id, "2024-06-01", "10:00")

    with pytest.raises(SlotTaken):
        booking.update_status(first, "pending")
    assert booking.get_appointment(first)["status"] == "cancelled"


def test_book_unknown_doctor_or_patient(booking, make_patient, make_doctor):
    pid = make_patient()
    _, doc_id = make_doctor()

    with pytest.raises(NotFound):
        booking.book_appointment(pid, 999, "2024-06-01", "10:00")
    with pytest.raises(NotFound):
        booking.book_appointment(999, doc_id, "2024-06-01", "10:00")


def test_store_rejects_second_active_appointment_in_slot(store, make_patient, make_doctor):
    pid = make_patient()
    _, doc_id = make_doctor()

    with store.session() as s:
        s.add(Appointment(patient_id=pid, doctor_id=doc_id, date="2024-06-01", time="10:00"))

    with pytest.raises(IntegrityError):
        with store.session() as s:
            s.add(Appointment(patient_id=pid, doctor_id=doc_id, date="2024-06-01", time="10:00"))

    # un annullato nello stesso slot invece è ammesso
    with store.session() as s:
        s.add(
            Appointment(
                patient_id=pid,
                doctor_id=doc_id,
                date="2024-06-01",
                time="10:00",
                status=AppointmentStatus.CANCELLED,
            )
        )


def test_concurrent_bookings_yield_one_winner(booking, make_patient, make_doctor):
    _, doc_id = make_doctor()
    patients = [make_patient(f"P{i}", f"p{i}@example.com") for i in range(4)]

    barrier = threading.Barrier(len(patients))
    results: list[str] = []
    lock = threading.Lock()

    def worker(pid: int) -> None:
        barrier.wait()
        try:
            booking.book_appointment(pid, doc_id, "2024-06-01", "09:00")
            outcome = "ok"
        except SlotTaken:
            outcome = "taken"
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(pid,)) for pid in patients]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(results) == ["ok", "taken", "taken", "taken"]


def test_list_for_patient_only_shows_own(booking, payments, make_patient, make_doctor):
    ann = make_patient("Ann", "ann@example.com")
    bob = make_patient("Bob", "bob@example.com")
    _, doc_id = make_doctor("Dana Doctor", "dana@doc.com", "Neurologist")

    a1 = booking.book_appointment(ann, doc_id, "2024-06-01", "10:00")
    a2 = booking.book_appointment(ann, doc_id, "2024-06-03", "09:00")
    booking.book_appointment(bob, doc_id, "2024-06-02", "10:00")

    rows = booking.list_appointments(ann, "patient")

    assert [r["id"] for r in rows] == [a2, a1]
    assert {r["patient_id"] for r in rows} == {ann}
    assert rows[0]["doctor_name"] == "Dana Doctor"
    assert rows[0]["specialization"] == "Neurologist"
    assert rows[0]["consultation_fee"] == 500.0
    assert rows[0]["payment_status"] is None


def test_list_for_doctor_uses_doctor_user_id(booking, make_patient, make_doctor):
    ann = make_patient("Ann", "ann@example.com")
    dana_uid, dana = make_doctor("Dana", "dana@doc.com")
    _, eric = make_doctor("Eric", "eric@doc.com")

    mine = booking.book_appointment(ann, dana, "2024-06-01", "10:00")
    booking.book_appointment(ann, eric, "2024-06-01", "11:00")

    rows = booking.list_appointments(dana_uid, "doctor")
    assert [r["id"] for r in rows] == [mine]
    assert rows[0]["patient_name"] == "Ann"

    # un utente senza profilo medico non vede nulla come "doctor"
    assert booking.list_appointments(ann, "doctor") == []


def test_list_for_admin_shows_everything_ordered(booking, make_patient, make_doctor):
    ann = make_patient("Ann", "ann@example.com")
    bob = make_patient("Bob", "bob@example.com")
    _, dana = make_doctor("Dana", "dana@doc.com")

    early = booking.book_appointment(ann, dana, "2024-06-01", "09:00")
    late_same_day = booking.book_appointment(bob, dana, "2024-06-01", "15:00")
    next_day = booking.book_appointment(ann, dana, "2024-06-02", "08:00")

    for role in (None, "admin", "whatever"):
        rows = booking.list_appointments(1, role)
        assert [r["id"] for r in rows] == [next_day, late_same_day, early]
        assert rows[1]["patient_name"] == "Bob"
        assert rows[1]["doctor_name"] == "Dana"


def test_payment_status_is_derived_from_first_payment(store, booking, payments, make_patient, make_doctor):
    ann = make_patient()
    _, dana = make_doctor()
    paid = booking.book_appointment(ann, dana, "2024-06-01", "09:00")
    failed_first = booking.book_appointment(ann, dana, "2024-06-01", "10:00")

    payments.record_payment(paid, 500)

    with store.session() as s:
        s.add(Payment(appointment_id=failed_first, amount=500, status=PaymentStatus.FAILED, transaction_id="TXNFAIL0001"))
    payments.record_payment(failed_first, 500)

    by_id = {r["id"]: r for r in booking.list_appointments(ann, "patient")}
    assert by_id[paid]["payment_status"] == "completed"
    assert by_id[failed_first]["payment_status"] == "failed"


def test_update_status_overwrites_status_and_notes(booking, make_patient, make_doctor):
    aid = booking.book_appointment(make_patient(), make_doctor()[1], "2024-06-01", "10:00")

    booking.update_status(aid, "approved", "bring previous reports")
    a = booking.get_appointment(aid)
    assert (a["status"], a["notes"]) == ("approved", "bring previous reports")

    # scrittura "cieca": note azzerate, nessun controllo sulla transizione
    booking.update_status(aid, "pending")
    a = booking.get_appointment(aid)
    assert (a["status"], a["notes"]) == ("pending", None)


def test_update_status_errors(booking, make_patient, make_doctor):
    aid = booking.book_appointment(make_patient(), make_doctor()[1], "2024-06-01", "10:00")

    with pytest.raises(NotFound):
        booking.update_status(999, "approved")
    with pytest.raises(InvalidStatus):
        booking.update_status(aid, "archived")


def test_strict_transitions(store, make_patient, make_doctor):
    strict = BookingEngine(store, strict_transitions=True)
    aid = strict.book_appointment(make_patient(), make_doctor()[1], "2024-06-01", "10:00")

    with pytest.raises(IllegalTransition):
        strict.update_status(aid, "completed")

    strict.update_status(aid, "approved")
    strict.update_status(aid, "approved", "notes only")
    strict.update_status(aid, "completed")

    with pytest.raises(IllegalTransition):
        strict.update_status(aid, "cancelled")
    assert strict.get_appointment(aid)["status"] == "completed"


def test_get_appointment_not_found(booking):
    with pytest.raises(NotFound):
        booking.get_appointment(42)
