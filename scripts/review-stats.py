#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from uuid import UUID

from db.session import SessionLocal
from review.percentile import stats_for


def main() -> None:
    parser = ArgumentParser(description="Print percentile-guess calibration stats for a reviewer")
    parser.add_argument("--user-id", required=True)
    args = parser.parse_args()

    session = SessionLocal()
    try:
        stats = stats_for(session, UUID(args.user_id))
        print(f"[review] user_id={args.user_id} reviewed={stats.reviewed} total={stats.total}")
        for name, window in stats.windows.items():
            print(
                f"[review] window={name} count={window.count} avg_error={window.avg_error:.2f} "
                f"min_error={window.min_error:.2f} max_error={window.max_error:.2f}"
            )
    finally:
        session.close()


if __name__ == "__main__":
    main()
