#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from production.catalog import set_rate
from production.context import CallerContext
from production.errors import ProductionError


def _coerce_uuid(value: str) -> UUID:
    return UUID(value)


def main() -> None:
    parser = ArgumentParser(description="Set the per-completion rate for a user and role")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--role", required=True, choices=["script_writer", "clipper", "editor"])
    parser.add_argument("--rate", required=True)
    parser.add_argument("--description", default=None)
    parser.add_argument("--actor-id", required=True, help="Admin user recorded on the audit event")
    args = parser.parse_args()

    ctx = CallerContext(user_id=_coerce_uuid(args.actor_id), roles=frozenset({"admin"}))
    session = SessionLocal()
    try:
        entry = set_rate(
            session,
            ctx,
            user_id=_coerce_uuid(args.user_id),
            role=args.role,
            rate=args.rate,
            rate_description=args.description,
            source="cli",
        )
        session.commit()
        print(f"[rate] user_id={entry.user_id} role={entry.role} rate={entry.rate}")
    except ProductionError as exc:
        session.rollback()
        raise SystemExit(str(exc))
    finally:
        session.close()


if __name__ == "__main__":
    main()
