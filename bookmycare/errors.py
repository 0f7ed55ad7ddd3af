"""
Errori di dominio.

Ogni errore porta lo status HTTP con cui viene esposto: il layer API li
traduce tutti in {"success": false, "message": ...}.
"""
from __future__ import annotations


class ClinicError(Exception):
    status_code = 400
    default_message = "Request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateEmail(ClinicError):
    default_message = "Email already registered."


class InvalidRole(ClinicError):
    default_message = "Invalid role."


class InvalidStatus(ClinicError):
    default_message = "Invalid appointment status."


class IllegalTransition(ClinicError):
    default_message = "Status transition not allowed."


class InvalidCredentials(ClinicError):
    status_code = 401
    default_message = "Invalid credentials"


class SlotTaken(ClinicError):
    default_message = "This slot is already booked."


class NotFound(ClinicError):
    status_code = 404
    default_message = "Not found."


class PersistenceError(ClinicError):
    status_code = 500
    default_message = "Database error."


class DuplicateTransactionId(PersistenceError):
    # l'id lo genera il server: per il client è un errore inatteso
    default_message = "Transaction id collision, please retry."


class InvalidProfile(ClinicError):
    # es. medico senza specializzazione: l'utente non viene creato
    default_message = "Profile data rejected."
