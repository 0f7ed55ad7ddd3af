from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# DB SQLite su file nella root del progetto
DB_PATH = Path(__file__).resolve().parents[1] / "clinic.db"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_PATH}")

SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Tariffa standard applicata ai medici registrati senza tariffa esplicita
DEFAULT_CONSULTATION_FEE = float(os.getenv("DEFAULT_CONSULTATION_FEE", "500.0"))

# "plain" (compatibilità col client esistente) oppure "bcrypt"
CREDENTIAL_SCHEME = os.getenv("CREDENTIAL_SCHEME", "plain").lower()

# Se true, PATCH /api/appointments/:id rifiuta le transizioni di stato non ammesse
STRICT_STATUS_TRANSITIONS = os.getenv("STRICT_STATUS_TRANSITIONS", "false").lower() == "true"

# In produzione: mettila in variabile d'ambiente
JWT_SECRET = os.getenv("JWT_SECRET", "CHANGE_ME_DEV_SECRET")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "60"))
