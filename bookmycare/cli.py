from __future__ import annotations

import argparse
import json
import logging

from . import config
from .auth_security import get_verifier
from .auth_service import AccountRegistry
from .db import Store
from .errors import ClinicError
from .seed import seed_base
from .services import BookingEngine, DoctorDirectory, PaymentRecorder, StatsAggregator


def cmd_init(store: Store, args: argparse.Namespace) -> None:
    store.create_all()
    seed_base(store, get_verifier())
    print("DB inizializzato e seed completato.")


def cmd_db_path(store: Store, args: argparse.Namespace) -> None:
    print("ENGINE URL:", store.engine.url)
    print("DB FILE   :", store.engine.url.database)


def cmd_list(store: Store, args: argparse.Namespace) -> None:
    if args.entity == "doctors":
        for d in DoctorDirectory(store).list_doctors():
            print(f"{d['id']} | {d['name']} | {d['specialization']} | fee {d['consultation_fee']:.2f}")
    elif args.entity == "appointments":
        for a in BookingEngine(store).list_appointments(None, None):
            print(
                f"{a['id']} | {a['date']} {a['time']} | {a['status']} | "
                f"{a['patient_name']} -> {a['doctor_name']} | pagamento: {a['payment_status'] or '-'}"
            )


def cmd_register(store: Store, args: argparse.Namespace) -> None:
    uid = AccountRegistry(store).register(
        name=args.name,
        email=args.email,
        password=args.password,
        role=args.role,
        phone=args.phone,
        age=args.age,
        gender=args.gender,
        specialization=args.specialization,
    )
    print(f"Utente creato: {uid}")


def cmd_delete_user(store: Store, args: argparse.Namespace) -> None:
    AccountRegistry(store).delete_user(args.user_id)
    print(f"OK: utente {args.user_id} cancellato (con profili e appuntamenti collegati).")


def cmd_book(store: Store, args: argparse.Namespace) -> None:
    aid = BookingEngine(store).book_appointment(args.patient_id, args.doctor_id, args.date, args.time)
    print(f"Appuntamento ID: {aid}")


def cmd_status(store: Store, args: argparse.Namespace) -> None:
    engine = BookingEngine(store, strict_transitions=args.strict or config.STRICT_STATUS_TRANSITIONS)
    engine.update_status(args.appointment_id, args.status, args.notes)
    print(f"Appuntamento {args.appointment_id}: {args.status}")


def cmd_pay(store: Store, args: argparse.Namespace) -> None:
    txn = PaymentRecorder(store).record_payment(args.appointment_id, args.amount)
    print(f"Pagamento registrato: {txn}")


def cmd_stats(store: Store, args: argparse.Namespace) -> None:
    print(json.dumps(StatsAggregator(store).summary(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="bookmycare", description="CLI BookMyCare (operazioni di amministrazione)")
    p.add_argument("--database-url", default=None, help="Default: DATABASE_URL da ambiente/.env")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Crea DB e carica seed")
    p_init.set_defaults(func=cmd_init)

    p_path = sub.add_parser("db-path", help="Mostra il DB in uso")
    p_path.set_defaults(func=cmd_db_path)

    p_list = sub.add_parser("list", help="Lista entità")
    p_list.add_argument("entity", choices=["doctors", "appointments"])
    p_list.set_defaults(func=cmd_list)

    p_reg = sub.add_parser("register", help="Crea utente (con profilo medico/paziente)")
    p_reg.add_argument("--name", required=True)
    p_reg.add_argument("--email", required=True)
    p_reg.add_argument("--password", required=True)
    p_reg.add_argument("--role", required=True, help="admin | doctor | patient")
    p_reg.add_argument("--phone", default=None)
    p_reg.add_argument("--age", type=int, default=None)
    p_reg.add_argument("--gender", default=None)
    p_reg.add_argument("--specialization", default=None)
    p_reg.set_defaults(func=cmd_register)

    p_del = sub.add_parser("delete-user", help="Cancella un utente e tutto ciò che ne dipende")
    p_del.add_argument("user_id", type=int)
    p_del.set_defaults(func=cmd_delete_user)

    p_book = sub.add_parser("book", help="Prenota appuntamento")
    p_book.add_argument("--patient-id", type=int, required=True)
    p_book.add_argument("--doctor-id", type=int, required=True)
    p_book.add_argument("--date", required=True, help="YYYY-MM-DD")
    p_book.add_argument("--time", required=True, help="HH:MM")
    p_book.set_defaults(func=cmd_book)

    p_status = sub.add_parser("status", help="Cambia stato appuntamento")
    p_status.add_argument("appointment_id", type=int)
    p_status.add_argument("status", help="pending | approved | rejected | completed | cancelled")
    p_status.add_argument("--notes", default=None)
    p_status.add_argument("--strict", action="store_true", help="Rifiuta transizioni non ammesse")
    p_status.set_defaults(func=cmd_status)

    p_pay = sub.add_parser("pay", help="Registra pagamento (simulato)")
    p_pay.add_argument("appointment_id", type=int)
    p_pay.add_argument("amount", type=float)
    p_pay.set_defaults(func=cmd_pay)

    p_stats = sub.add_parser("stats", help="Statistiche dashboard admin")
    p_stats.set_defaults(func=cmd_stats)

    return p


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    store = Store(args.database_url)
    try:
        store.create_all()  # garantisce tabelle
        args.func(store, args)
    except ClinicError as e:
        print(f"Errore: {e.message}")
        return 1
    finally:
        store.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
