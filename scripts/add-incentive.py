#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from production.context import CallerContext
from production.errors import ProductionError
from production.payments import create_incentive_payment


def _coerce_uuid(value: str) -> UUID:
    return UUID(value)


def main() -> None:
    parser = ArgumentParser(description="Add an incentive payment for a user")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--amount", required=True)
    parser.add_argument("--short-id", default=None)
    parser.add_argument("--notes", default=None)
    parser.add_argument("--actor-id", required=True)
    args = parser.parse_args()

    ctx = CallerContext(user_id=_coerce_uuid(args.actor_id), roles=frozenset({"admin"}))
    session = SessionLocal()
    try:
        payment = create_incentive_payment(
            session,
            ctx,
            user_id=_coerce_uuid(args.user_id),
            amount=args.amount,
            short_id=_coerce_uuid(args.short_id) if args.short_id else None,
            admin_notes=args.notes,
            source="cli",
        )
        session.commit()
        print(f"[incentive] payment_id={payment.id} user_id={payment.user_id} amount={payment.amount}")
    except ProductionError as exc:
        session.rollback()
        raise SystemExit(str(exc))
    finally:
        session.close()


if __name__ == "__main__":
    main()
