"""
Backend applicativo BookMyCare.

Struttura:
- config.py        : configurazione da ambiente / .env
- db.py            : Store (engine e sessioni SQLAlchemy)
- models.py        : modelli ORM e enum
- errors.py        : errori di dominio e relativo status HTTP
- auth_security.py : verifica credenziali (plain / bcrypt) e token JWT
- auth_service.py  : registrazione utenti e login
- services.py      : logica di dominio (prenotazioni, pagamenti, statistiche, medici)
- seed.py          : dati iniziali (admin, medici dimostrativi)
- api_main.py      : API REST FastAPI
- cli.py           : operazioni di amministrazione via CLI
"""
