from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from . import config

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base ORM per tutti i modelli."""
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignora le FK (e quindi ON DELETE CASCADE) se non attivate per connessione
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Store:
    """
    Handle unico verso il DB, condiviso da tutti i componenti.

    Viene creato una volta (app factory / CLI / test) e passato esplicitamente
    ai servizi: nessuna sessione globale a livello di modulo.
    """

    def __init__(self, url: str | None = None, echo: bool | None = None) -> None:
        self.url = url or config.DATABASE_URL
        is_sqlite = self.url.startswith("sqlite")

        self.engine: Engine = create_engine(
            self.url,
            echo=config.SQL_ECHO if echo is None else echo,
            future=True,
            # le richieste FastAPI girano nel threadpool
            connect_args={"check_same_thread": False} if is_sqlite else {},
        )
        if is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )

    def create_all(self) -> None:
        """Crea le tabelle se non esistono."""
        # import locale: registra i modelli nel metadata
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Schema pronto su %s", self.engine.url)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Context manager per gestire correttamente la sessione:
        - commit se tutto ok
        - rollback su eccezioni
        - close sempre
        """
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
