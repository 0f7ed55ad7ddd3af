from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from jose import JWTError, jwt
from passlib.context import CryptContext

from . import config


class CredentialVerifier(Protocol):
    """Come una password viene salvata e confrontata."""

    def hash(self, password: str) -> str: ...

    def verify(self, password: str, stored: str) -> bool: ...


class PlaintextVerifier:
    """
    Comportamento storico del client BookMyCare: password in chiaro,
    confronto per uguaglianza. Da usare solo per compatibilità/dev.
    """

    name = "plain"

    def hash(self, password: str) -> str:
        return password

    def verify(self, password: str, stored: str) -> bool:
        return hmac.compare_digest(password.encode("utf-8"), stored.encode("utf-8"))


class BcryptVerifier:
    """password_hash con bcrypt (passlib)."""

    name = "bcrypt"

    def __init__(self) -> None:
        self._ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

    def hash(self, password: str) -> str:
        return self._ctx.hash(password)

    def verify(self, password: str, stored: str) -> bool:
        try:
            return self._ctx.verify(password, stored)
        except ValueError:
            # valore salvato non riconosciuto (es. password in chiaro da seed vecchi)
            return False


_VERIFIERS: dict[str, type] = {
    PlaintextVerifier.name: PlaintextVerifier,
    BcryptVerifier.name: BcryptVerifier,
}


def get_verifier(scheme: str | None = None) -> CredentialVerifier:
    scheme = (scheme or config.CREDENTIAL_SCHEME).lower()
    try:
        return _VERIFIERS[scheme]()
    except KeyError:
        raise ValueError(f"CREDENTIAL_SCHEME non supportato: {scheme!r}") from None


def create_access_token(subject: str, extra: dict[str, Any] | None = None) -> str:
    """
    subject: tipicamente user_id.
    Usa datetime timezone-aware per evitare offset/bug su timestamp.
    """
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload: dict[str, Any] = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    if extra:
        payload.update(extra)

    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])


def get_subject(token: str) -> str | None:
    try:
        payload = decode_token(token)
        return payload.get("sub")
    except JWTError:
        return None
