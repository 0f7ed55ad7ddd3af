from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from bookmycare.api_main import create_app
from bookmycare.auth_security import PlaintextVerifier
from bookmycare.auth_service import AccountRegistry
from bookmycare.db import Store
from bookmycare.models import Doctor
from bookmycare.services import BookingEngine, PaymentRecorder, StatsAggregator


@pytest.fixture()
def store(tmp_path):
    s = Store(f"sqlite:///{tmp_path / 'clinic.db'}")
    s.create_all()
    yield s
    s.dispose()


@pytest.fixture()
def accounts(store):
    return AccountRegistry(store, PlaintextVerifier())


@pytest.fixture()
def booking(store):
    return BookingEngine(store)


@pytest.fixture()
def payments(store):
    return PaymentRecorder(store)


@pytest.fixture()
def stats(store):
    return StatsAggregator(store)


def doctor_id_of(store: Store, user_id: int) -> int:
    with store.session() as s:
        return s.execute(select(Doctor.id).where(Doctor.user_id == user_id)).scalar_one()


@pytest.fixture()
def make_patient(accounts):
    def _make(name: str = "Paul Patient", email: str = "paul@example.com") -> int:
        return accounts.register(name, email, "secret", "patient", age=34, gender="male")

    return _make


@pytest.fixture()
def make_doctor(accounts, store):
    """Ritorna (user_id, doctor_id)."""

    def _make(name: str = "Dana Doctor", email: str = "dana@doc.com", specialization: str = "Neurologist"):
        uid = accounts.register(name, email, "doc", "doctor", specialization=specialization)
        return uid, doctor_id_of(store, uid)

    return _make


@pytest.fixture()
def client(store):
    app = create_app(store=store, verifier=PlaintextVerifier(), strict_transitions=False)
    with TestClient(app) as c:
        yield c
