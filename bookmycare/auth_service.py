from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .auth_security import CredentialVerifier, get_verifier
from .db import Store
from .errors import DuplicateEmail, InvalidCredentials, InvalidProfile, InvalidRole, NotFound, PersistenceError
from .models import Doctor, Patient, Role, User

logger = logging.getLogger(__name__)


class AccountRegistry:
    """Creazione utenti (con profilo medico/paziente) e login."""

    def __init__(self, store: Store, verifier: CredentialVerifier | None = None) -> None:
        self.store = store
        self.verifier = verifier or get_verifier()

    def register(
        self,
        name: str,
        email: str,
        password: str,
        role: str,
        phone: str | None = None,
        age: int | None = None,
        gender: str | None = None,
        specialization: str | None = None,
    ) -> int:
        """
        Crea l'utente e, se serve, il profilo collegato nella stessa transazione:
        se l'insert del profilo fallisce non resta nessun utente orfano.
        """
        try:
            ruolo = Role(role)
        except ValueError:
            raise InvalidRole(f"Invalid role: {role!r}") from None

        try:
            with self.store.session() as s:
                exists = s.execute(select(User.id).where(User.email == email)).first()
                if exists:
                    raise DuplicateEmail()

                u = User(
                    name=name.strip(),
                    email=email,
                    phone=phone,
                    password=self.verifier.hash(password),
                    role=ruolo,
                )
                s.add(u)
                s.flush()

                if ruolo is Role.PATIENT:
                    s.add(Patient(user_id=u.id, age=age, gender=gender))
                elif ruolo is Role.DOCTOR:
                    s.add(Doctor(user_id=u.id, specialization=specialization))
                s.flush()

                logger.info("Registrato utente %s (%s) id=%s", email, ruolo.value, u.id)
                return u.id
        except IntegrityError as e:
            # email presa da una registrazione concorrente, altrimenti profilo rifiutato
            if self._email_exists(email):
                raise DuplicateEmail() from e
            raise InvalidProfile(str(e.orig)) from e
        except SQLAlchemyError as e:
            raise PersistenceError() from e

    def authenticate(self, email: str, password: str) -> dict[str, Any]:
        logger.info("Login attempt for: %s", email)
        with self.store.session() as s:
            u = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
            if u is None:
                logger.info("Login failed for: %s (utente inesistente)", email)
                raise InvalidCredentials()
            if not self.verifier.verify(password, u.password):
                logger.info("Login failed for: %s (password errata)", email)
                raise InvalidCredentials()

            logger.info("Login successful for: %s", email)
            return u.to_public()

    def get_user(self, user_id: int) -> dict[str, Any]:
        with self.store.session() as s:
            u = s.get(User, user_id)
            if u is None:
                raise NotFound(f"User {user_id} not found.")
            return u.to_public()

    def delete_user(self, user_id: int) -> None:
        """Cancella l'utente: profili, appuntamenti e pagamenti collegati seguono in cascata."""
        try:
            with self.store.session() as s:
                u = s.get(User, user_id)
                if u is None:
                    raise NotFound(f"User {user_id} not found.")
                s.delete(u)
        except SQLAlchemyError as e:
            raise PersistenceError() from e
        logger.warning("Utente %s cancellato (cascata su profili e appuntamenti)", user_id)

    def _email_exists(self, email: str) -> bool:
        with self.store.session() as s:
            return s.execute(select(User.id).where(User.email == email)).first() is not None
