from __future__ import annotations

import logging

from sqlalchemy import select

from .auth_security import CredentialVerifier, get_verifier
from .db import Store
from .models import Doctor, Role, User

logger = logging.getLogger(__name__)

ADMIN = ("System Admin", "admin@bookmycare.com", "admin123")

DEMO_DOCTOR_PASSWORD = "doc123"
DEMO_DOCTORS = [
    ("Sarah Johnson", "sarah@doc.com", "Cardiologist", 800.0),
    ("Michael Chen", "michael@doc.com", "Dermatologist", 600.0),
    ("Emily Davis", "emily@doc.com", "Pediatrician", 500.0),
]


def seed_base(store: Store, verifier: CredentialVerifier | None = None) -> bool:
    """
    Popola dati minimi (idempotente):
    - amministratore di sistema
    - medici dimostrativi

    Ogni account è cercato per email, quindi riavvii ripetuti non duplicano nulla.
    Ritorna True se è stato inserito qualcosa.
    """
    verifier = verifier or get_verifier()
    inseriti = False

    with store.session() as s:

        def email_libera(email: str) -> bool:
            return s.execute(select(User.id).where(User.email == email)).first() is None

        name, email, password = ADMIN
        if email_libera(email):
            logger.info("Seeding initial data...")
            s.add(User(name=name, email=email, password=verifier.hash(password), role=Role.ADMIN))
            inseriti = True

        for name, email, spec, fee in DEMO_DOCTORS:
            if not email_libera(email):
                continue
            u = User(name=name, email=email, password=verifier.hash(DEMO_DOCTOR_PASSWORD), role=Role.DOCTOR)
            s.add(u)
            s.flush()
            s.add(Doctor(user_id=u.id, specialization=spec, consultation_fee=fee))
            inseriti = True

    if inseriti:
        logger.info("Seed completato.")
    return inseriti
