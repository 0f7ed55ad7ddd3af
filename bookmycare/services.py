from __future__ import annotations

import logging
import secrets
import string
from typing import Any, Callable

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from .db import Store
from .errors import (
    DuplicateTransactionId,
    IllegalTransition,
    InvalidProfile,
    InvalidStatus,
    NotFound,
    PersistenceError,
    SlotTaken,
)
from .models import Appointment, AppointmentStatus, Doctor, Payment, PaymentStatus, Role, User

logger = logging.getLogger(__name__)


# =========================
# Helper / proiezioni
# =========================
def _appointment_dict(a: Appointment) -> dict[str, Any]:
    return {
        "id": a.id,
        "patient_id": a.patient_id,
        "doctor_id": a.doctor_id,
        "date": a.date,
        "time": a.time,
        "status": a.status.value,
        "notes": a.notes,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


def _doctor_dict(d: Doctor, name: str, email: str, phone: str | None) -> dict[str, Any]:
    return {
        "id": d.id,
        "user_id": d.user_id,
        "specialization": d.specialization,
        "bio": d.bio,
        "experience": d.experience,
        "consultation_fee": d.consultation_fee,
        "availability": d.availability,
        "name": name,
        "email": email,
        "phone": phone,
    }


def _payment_status_column():
    """Stato del primo pagamento registrato per l'appuntamento (None se non pagato)."""
    return (
        select(Payment.status)
        .where(Payment.appointment_id == Appointment.id)
        .order_by(Payment.id.asc())
        .limit(1)
        .correlate(Appointment)
        .scalar_subquery()
        .label("payment_status")
    )


def _enum_value(v: Any) -> Any:
    return v.value if v is not None else None


# =========================
# Disponibilità
# =========================
def _slot_occupato(s: Session, doctor_id: int, date: str, time: str) -> bool:
    """Uno slot è occupato se esiste un appuntamento non annullato per (medico, data, ora)."""
    q = (
        select(Appointment.id)
        .where(
            and_(
                Appointment.doctor_id == doctor_id,
                Appointment.date == date,
                Appointment.time == time,
                Appointment.status != AppointmentStatus.CANCELLED,
            )
        )
        .limit(1)
    )
    return s.execute(q).first() is not None


# Transizioni ammesse quando strict_transitions è attivo
TRANSIZIONI: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.APPROVED, AppointmentStatus.REJECTED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.APPROVED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.REJECTED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


# =========================
# Prenotazione (use case core)
# =========================
class BookingEngine:
    def __init__(self, store: Store, strict_transitions: bool = False) -> None:
        self.store = store
        self.strict_transitions = strict_transitions

    def book_appointment(self, patient_id: int, doctor_id: int, date: str, time: str) -> int:
        """
        Use case: Prenotare appuntamento.
        - verifica che paziente e medico esistano
        - verifica che lo slot sia libero
        - crea l'appuntamento in stato pending

        Il controllo preventivo dà il messaggio giusto nel caso normale; con due
        richieste concorrenti è l'indice univoco parziale a far fallire la seconda.
        """
        try:
            with self.store.session() as s:
                if s.get(User, patient_id) is None:
                    raise NotFound(f"Patient {patient_id} not found.")
                if s.get(Doctor, doctor_id) is None:
                    raise NotFound(f"Doctor {doctor_id} not found.")
                if _slot_occupato(s, doctor_id, date, time):
                    raise SlotTaken()

                app = Appointment(
                    patient_id=patient_id,
                    doctor_id=doctor_id,
                    date=date,
                    time=time,
                    status=AppointmentStatus.PENDING,
                )
                s.add(app)
                s.flush()
                appointment_id = app.id
        except IntegrityError as e:
            if self._slot_occupato(doctor_id, date, time):
                logger.info("Slot %s %s medico=%s preso da una richiesta concorrente", date, time, doctor_id)
                raise SlotTaken() from e
            raise PersistenceError() from e
        except SQLAlchemyError as e:
            raise PersistenceError() from e

        logger.info("Appuntamento %s prenotato: medico=%s %s %s", appointment_id, doctor_id, date, time)
        return appointment_id

    def list_appointments(self, viewer_id: int | None, viewer_role: str | None) -> list[dict]:
        """
        Versione 'flat': dict serializzabili, più recenti prima.
        - patient: i propri appuntamenti + dati del medico
        - doctor : gli appuntamenti del proprio profilo medico + nome paziente
        - altro  : tutti, con nomi di paziente e medico
        """
        payment_status = _payment_status_column()
        ordine = (Appointment.date.desc(), Appointment.time.desc(), Appointment.id.desc())

        with self.store.session() as s:
            if viewer_role == Role.PATIENT.value:
                q = (
                    select(
                        Appointment,
                        User.name.label("doctor_name"),
                        Doctor.specialization,
                        Doctor.consultation_fee,
                        payment_status,
                    )
                    .join(Doctor, Doctor.id == Appointment.doctor_id)
                    .join(User, User.id == Doctor.user_id)
                    .where(Appointment.patient_id == viewer_id)
                    .order_by(*ordine)
                )
                return [
                    {
                        **_appointment_dict(r.Appointment),
                        "doctor_name": r.doctor_name,
                        "specialization": r.specialization,
                        "consultation_fee": r.consultation_fee,
                        "payment_status": _enum_value(r.payment_status),
                    }
                    for r in s.execute(q).all()
                ]

            if viewer_role == Role.DOCTOR.value:
                q = (
                    select(Appointment, User.name.label("patient_name"), payment_status)
                    .join(Doctor, Doctor.id == Appointment.doctor_id)
                    .join(User, User.id == Appointment.patient_id)
                    .where(Doctor.user_id == viewer_id)
                    .order_by(*ordine)
                )
                return [
                    {
                        **_appointment_dict(r.Appointment),
                        "patient_name": r.patient_name,
                        "payment_status": _enum_value(r.payment_status),
                    }
                    for r in s.execute(q).all()
                ]

            paziente = aliased(User)
            utente_medico = aliased(User)
            q = (
                select(
                    Appointment,
                    paziente.name.label("patient_name"),
                    utente_medico.name.label("doctor_name"),
                    payment_status,
                )
                .join(paziente, paziente.id == Appointment.patient_id)
                .join(Doctor, Doctor.id == Appointment.doctor_id)
                .join(utente_medico, utente_medico.id == Doctor.user_id)
                .order_by(*ordine)
            )
            return [
                {
                    **_appointment_dict(r.Appointment),
                    "patient_name": r.patient_name,
                    "doctor_name": r.doctor_name,
                    "payment_status": _enum_value(r.payment_status),
                }
                for r in s.execute(q).all()
            ]

    def get_appointment(self, appointment_id: int) -> dict[str, Any]:
        with self.store.session() as s:
            a = s.get(Appointment, appointment_id)
            if a is None:
                raise NotFound(f"Appointment {appointment_id} not found.")
            return _appointment_dict(a)

    def update_status(self, appointment_id: int, status: str, notes: str | None = None) -> None:
        """
        Use case: cambio stato (approva, rifiuta, completa, annulla).
        Sovrascrive stato e note; le transizioni vengono verificate solo in modalità strict.
        """
        try:
            nuovo = AppointmentStatus(status)
        except ValueError:
            raise InvalidStatus(f"Invalid appointment status: {status!r}") from None

        try:
            with self.store.session() as s:
                app = s.get(Appointment, appointment_id)
                if app is None:
                    raise NotFound(f"Appointment {appointment_id} not found.")

                attuale = app.status
                if self.strict_transitions and nuovo != attuale and nuovo not in TRANSIZIONI[attuale]:
                    raise IllegalTransition(f"Cannot move appointment from {attuale.value} to {nuovo.value}.")

                app.status = nuovo
                app.notes = notes
        except IntegrityError as e:
            # riattivazione di un appuntamento annullato il cui slot è stato ripreso
            raise SlotTaken() from e
        except SQLAlchemyError as e:
            raise PersistenceError() from e

        logger.info("Appuntamento %s: %s -> %s", appointment_id, attuale.value, nuovo.value)

    def _slot_occupato(self, doctor_id: int, date: str, time: str) -> bool:
        with self.store.session() as s:
            return _slot_occupato(s, doctor_id, date, time)


# =========================
# Pagamenti (simulati)
# =========================
TXN_PREFIX = "TXN"
_TXN_ALPHABET = string.ascii_uppercase + string.digits


def new_transaction_id() -> str:
    return TXN_PREFIX + "".join(secrets.choice(_TXN_ALPHABET) for _ in range(9))


class PaymentRecorder:
    def __init__(self, store: Store, id_factory: Callable[[], str] = new_transaction_id) -> None:
        self.store = store
        self.id_factory = id_factory

    def record_payment(self, appointment_id: int, amount: float) -> str:
        """Registra un pagamento già saldato (nessun gateway reale)."""
        transaction_id = self.id_factory()
        try:
            with self.store.session() as s:
                if s.get(Appointment, appointment_id) is None:
                    raise NotFound(f"Appointment {appointment_id} not found.")
                s.add(
                    Payment(
                        appointment_id=appointment_id,
                        amount=amount,
                        status=PaymentStatus.COMPLETED,
                        transaction_id=transaction_id,
                    )
                )
        except IntegrityError as e:
            if self._transaction_exists(transaction_id):
                logger.error("Collisione transaction_id %s", transaction_id)
                raise DuplicateTransactionId() from e
            raise PersistenceError() from e
        except SQLAlchemyError as e:
            raise PersistenceError() from e

        logger.info("Pagamento %s registrato: appuntamento=%s importo=%.2f", transaction_id, appointment_id, amount)
        return transaction_id

    def _transaction_exists(self, transaction_id: str) -> bool:
        with self.store.session() as s:
            q = select(Payment.id).where(Payment.transaction_id == transaction_id)
            return s.execute(q).first() is not None


# =========================
# Statistiche (dashboard admin)
# =========================
class StatsAggregator:
    def __init__(self, store: Store) -> None:
        self.store = store

    def summary(self) -> dict[str, Any]:
        with self.store.session() as s:
            total_patients = s.scalar(select(func.count(User.id)).where(User.role == Role.PATIENT))
            total_doctors = s.scalar(select(func.count(User.id)).where(User.role == Role.DOCTOR))
            total_appointments = s.scalar(select(func.count(Appointment.id)))
            revenue = s.scalar(
                select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.status == PaymentStatus.COMPLETED)
            )
        return {
            "totalPatients": total_patients or 0,
            "totalDoctors": total_doctors or 0,
            "totalAppointments": total_appointments or 0,
            "revenue": float(revenue or 0),
        }


# =========================
# Medici
# =========================
_PROFILE_FIELDS = frozenset({"bio", "experience", "consultation_fee", "availability"})


class DoctorDirectory:
    def __init__(self, store: Store) -> None:
        self.store = store

    def list_doctors(self) -> list[dict]:
        with self.store.session() as s:
            rows = s.execute(
                select(Doctor, User.name, User.email, User.phone)
                .join(User, User.id == Doctor.user_id)
                .order_by(Doctor.id)
            ).all()
            return [_doctor_dict(r.Doctor, r.name, r.email, r.phone) for r in rows]

    def get_doctor(self, doctor_id: int) -> dict[str, Any]:
        with self.store.session() as s:
            r = s.execute(
                select(Doctor, User.name, User.email, User.phone)
                .join(User, User.id == Doctor.user_id)
                .where(Doctor.id == doctor_id)
            ).first()
            if r is None:
                raise NotFound(f"Doctor {doctor_id} not found.")
            return _doctor_dict(r.Doctor, r.name, r.email, r.phone)

    def update_profile(self, doctor_id: int, **changes: Any) -> None:
        """Aggiorna solo i campi passati; availability viene salvata così com'è."""
        sconosciuti = set(changes) - _PROFILE_FIELDS
        if sconosciuti:
            raise TypeError(f"Campi profilo non modificabili: {sorted(sconosciuti)}")
        # la tariffa è NOT NULL: si può cambiare, non cancellare
        if "consultation_fee" in changes and changes["consultation_fee"] is None:
            raise InvalidProfile("consultation_fee cannot be null.")

        try:
            with self.store.session() as s:
                d = s.get(Doctor, doctor_id)
                if d is None:
                    raise NotFound(f"Doctor {doctor_id} not found.")
                for key, value in changes.items():
                    setattr(d, key, value)
        except SQLAlchemyError as e:
            raise PersistenceError() from e
