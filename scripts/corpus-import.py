#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser
from pathlib import Path

from db.session import SessionLocal
from production.audit import record_event
from production.errors import ProductionError
from review.corpus import import_corpus, load_corpus_file


def main() -> None:
    parser = ArgumentParser(description="Import benchmark shorts into the review corpus")
    parser.add_argument("path", help="YAML or JSON file with a list of corpus items")
    args = parser.parse_args()

    path = Path(args.path)
    if not path.exists():
        raise SystemExit(f"Corpus file not found: {path}")

    session = SessionLocal()
    try:
        result = import_corpus(session, load_corpus_file(path))
        record_event(
            session,
            "corpus_imported",
            source="cli",
            path=str(path),
            created=result.created,
            updated=result.updated,
        )
        session.commit()
        print(f"[corpus] path={path} created={result.created} updated={result.updated}")
    except ProductionError as exc:
        session.rollback()
        raise SystemExit(str(exc))
    finally:
        session.close()


if __name__ == "__main__":
    main()
