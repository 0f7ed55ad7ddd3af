from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import config
from .auth_security import CredentialVerifier, create_access_token, get_subject, get_verifier
from .auth_service import AccountRegistry
from .db import Store
from .errors import ClinicError, InvalidCredentials, NotFound
from .seed import seed_base
from .services import BookingEngine, DoctorDirectory, PaymentRecorder, StatsAggregator

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# OAuth2 Bearer (Authorization: Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

router = APIRouter(prefix="/api")



# Schemi Auth

class LoginIn(BaseModel):
    email: str
    password: str


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
    # validato dal registry (InvalidRole), non da pydantic
    role: str
    phone: str | None = None
    age: int | None = Field(None, ge=0)
    gender: str | None = None
    specialization: str | None = None



# Schemi Domain

class AppointmentCreateIn(BaseModel):
    patient_id: int
    doctor_id: int
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: str = Field(..., pattern=r"^\d{2}:\d{2}$")


class AppointmentUpdateIn(BaseModel):
    status: str
    notes: str | None = None


class PaymentCreateIn(BaseModel):
    appointment_id: int
    amount: float = Field(..., ge=0)


class DoctorProfileIn(BaseModel):
    bio: str | None = None
    experience: int | None = Field(None, ge=0)
    consultation_fee: float | None = Field(None, ge=0)
    # struttura libera (slot pubblicati), salvata come JSON
    availability: Any = None



# Dipendenze

def get_accounts(request: Request) -> AccountRegistry:
    return request.app.state.accounts


def get_booking(request: Request) -> BookingEngine:
    return request.app.state.booking


def get_payments(request: Request) -> PaymentRecorder:
    return request.app.state.payments


def get_stats(request: Request) -> StatsAggregator:
    return request.app.state.stats


def get_doctors(request: Request) -> DoctorDirectory:
    return request.app.state.doctors


def get_current_user(
    token: str = Depends(oauth2_scheme),
    accounts: AccountRegistry = Depends(get_accounts),
) -> dict[str, Any]:
    # protezione extra: elimina spazi / virgolette accidentali
    token = token.strip().strip('"').strip("'")

    user_id = get_subject(token)
    if not user_id or not user_id.isdigit():
        raise InvalidCredentials("Invalid token")
    try:
        return accounts.get_user(int(user_id))
    except NotFound:
        raise InvalidCredentials("Invalid token") from None



# AUTH endpoints

@router.post("/auth/login")
def login(payload: LoginIn, accounts: AccountRegistry = Depends(get_accounts)) -> dict[str, Any]:
    user = accounts.authenticate(payload.email, payload.password)
    token = create_access_token(subject=str(user["id"]), extra={"role": user["role"]})
    return {"success": True, "user": user, "access_token": token}


@router.post("/auth/register")
def register(payload: RegisterIn, accounts: AccountRegistry = Depends(get_accounts)) -> dict[str, Any]:
    user_id = accounts.register(
        name=payload.name,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        phone=payload.phone,
        age=payload.age,
        gender=payload.gender,
        specialization=payload.specialization,
    )
    return {"success": True, "userId": user_id}


@router.get("/auth/me")
def me(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    return user



# Medici

@router.get("/doctors")
def api_doctors(doctors: DoctorDirectory = Depends(get_doctors)) -> list[dict]:
    return doctors.list_doctors()


@router.get("/doctors/{doctor_id}")
def api_doctor(doctor_id: int, doctors: DoctorDirectory = Depends(get_doctors)) -> dict[str, Any]:
    return doctors.get_doctor(doctor_id)


@router.patch("/doctors/{doctor_id}")
def api_update_doctor(
    doctor_id: int,
    payload: DoctorProfileIn,
    doctors: DoctorDirectory = Depends(get_doctors),
) -> dict[str, Any]:
    doctors.update_profile(doctor_id, **payload.model_dump(exclude_unset=True))
    return {"success": True}



# Appuntamenti

@router.post("/appointments")
def api_book(payload: AppointmentCreateIn, booking: BookingEngine = Depends(get_booking)) -> dict[str, Any]:
    appointment_id = booking.book_appointment(
        patient_id=payload.patient_id,
        doctor_id=payload.doctor_id,
        date=payload.date,
        time=payload.time,
    )
    return {"success": True, "appointmentId": appointment_id}


@router.get("/appointments/{user_id}")
def api_appointments(
    user_id: int,
    role: str | None = Query(None),
    booking: BookingEngine = Depends(get_booking),
) -> list[dict]:
    return booking.list_appointments(user_id, role)


@router.patch("/appointments/{appointment_id}")
def api_update_appointment(
    appointment_id: int,
    payload: AppointmentUpdateIn,
    booking: BookingEngine = Depends(get_booking),
) -> dict[str, Any]:
    booking.update_status(appointment_id, payload.status, payload.notes or None)
    return {"success": True}



# Admin / pagamenti

@router.get("/admin/stats")
def api_stats(stats: StatsAggregator = Depends(get_stats)) -> dict[str, Any]:
    return stats.summary()


@router.post("/payments")
def api_pay(payload: PaymentCreateIn, payments: PaymentRecorder = Depends(get_payments)) -> dict[str, Any]:
    transaction_id = payments.record_payment(payload.appointment_id, payload.amount)
    return {"success": True, "transaction_id": transaction_id}



# Errori -> {"success": false, "message": ...}

def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


async def clinic_error_handler(request: Request, exc: ClinicError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return _failure(exc.status_code, exc.message)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    parti = []
    for err in exc.errors():
        campo = ".".join(str(p) for p in err.get("loc", ())[1:])
        parti.append(f"{campo}: {err.get('msg')}" if campo else str(err.get("msg")))
    return _failure(400, "; ".join(parti) or "Invalid request")


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _failure(exc.status_code, str(exc.detail))



# App factory

def create_app(
    store: Store | None = None,
    verifier: CredentialVerifier | None = None,
    strict_transitions: bool | None = None,
    seed: bool = True,
) -> FastAPI:
    store = store or Store()
    verifier = verifier or get_verifier()
    if strict_transitions is None:
        strict_transitions = config.STRICT_STATUS_TRANSITIONS

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Crea tabelle e seed base (idempotente)
        store.create_all()
        if seed:
            seed_base(store, verifier)
        logger.info("Database initialized successfully.")
        yield
        store.dispose()

    app = FastAPI(title="BookMyCare API", version="1.0.0", lifespan=lifespan)

    app.state.store = store
    app.state.accounts = AccountRegistry(store, verifier)
    app.state.booking = BookingEngine(store, strict_transitions=strict_transitions)
    app.state.payments = PaymentRecorder(store)
    app.state.stats = StatsAggregator(store)
    app.state.doctors = DoctorDirectory(store)

    app.include_router(router)
    app.add_exception_handler(ClinicError, clinic_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    return app


app = create_app()
