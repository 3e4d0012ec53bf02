#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from production.context import CallerContext
from production.errors import ProductionError
from production.payments import mark_paid


def _coerce_uuid(value: str) -> UUID:
    return UUID(value)


def main() -> None:
    parser = ArgumentParser(description="Mark a pending payment as paid")
    parser.add_argument("--payment-id", required=True)
    parser.add_argument("--reference", required=True, help="Transaction reference from the payout")
    parser.add_argument("--actor-id", required=True)
    args = parser.parse_args()

    ctx = CallerContext(user_id=_coerce_uuid(args.actor_id), roles=frozenset({"admin"}))
    session = SessionLocal()
    try:
        payment = mark_paid(
            session,
            ctx,
            _coerce_uuid(args.payment_id),
            args.reference,
            source="cli",
        )
        session.commit()
        print(
            f"[payment] payment_id={payment.id} status={payment.status} "
            f"amount={payment.amount} reference={payment.transaction_reference}"
        )
    except ProductionError as exc:
        session.rollback()
        raise SystemExit(str(exc))
    finally:
        session.close()


if __name__ == "__main__":
    main()
