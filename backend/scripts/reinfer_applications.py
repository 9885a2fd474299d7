#!/usr/bin/env python3
"""
Re-run status inference for every non-archived application of a user.

No Redis/Celery needed; talks to the database directly.

Usage (from backend/; use the project venv):
  ./.venv/bin/python scripts/reinfer_applications.py --user-id 1

  # Show what would change without writing
  ./.venv/bin/python scripts/reinfer_applications.py --user-id 1 --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

# Ensure backend package is importable when run as script from backend or project root
_script_dir = os.path.dirname(os.path.abspath(__file__))
_backend = os.path.dirname(_script_dir)
if _backend not in sys.path:
    sys.path.insert(0, _backend)

from sqlalchemy.orm import Session

from jobtrack.config import settings
from jobtrack.database import SessionLocal, init_db
from jobtrack.services.pipeline import IngestionPipeline
from jobtrack.services.status_inference import InferencePolicy, decide_update, infer_status
from jobtrack.services.store import SqlAlchemyStore

PAGE_SIZE = 100


def _all_applications(store: SqlAlchemyStore, user_id: int):
    offset = 0
    while True:
        page = store.list_applications(user_id, limit=PAGE_SIZE, offset=offset)
        if not page:
            return
        yield from page
        offset += len(page)


def _dry_run(store: SqlAlchemyStore, user_id: int) -> dict:
    policy = InferencePolicy.from_settings()
    counts = {"seen": 0, "would_apply": 0, "would_suggest": 0, "blocked": 0}
    for application in _all_applications(store, user_id):
        counts["seen"] += 1
        result = infer_status(application, store.list_events(application.id), policy=policy)
        decision = decide_update(application, result, policy=policy)
        counts["would_apply"] += int(decision.applied)
        counts["would_suggest"] += int(decision.suggested)
        counts["blocked"] += int(decision.blocked is not None)
        print(
            f"[{application.id}] {application.company_name} / {application.job_title}: "
            f"{application.current_status.value} -> {result.inferred_status.value} "
            f"({result.confidence:.2f}) applied={decision.applied} suggested={decision.suggested} "
            f"blocked={decision.blocked.value if decision.blocked else None}"
        )
    return counts


def _reinfer(store: SqlAlchemyStore, user_id: int) -> dict:
    pipeline = IngestionPipeline(store, user_id)
    ids = [a.id for a in _all_applications(store, user_id)]
    counts = {"seen": len(ids), "applied": 0, "suggested": 0, "blocked": 0}
    for i, application_id in enumerate(ids, start=1):
        result = asyncio.run(pipeline.reinfer_application(application_id))
        counts["applied"] += int(result.applied)
        counts["suggested"] += int(result.suggested)
        counts["blocked"] += int(result.blocked is not None)
        print(f"[{i}/{len(ids)}] application {application_id}: {result.status} {result.inferred_status}", flush=True)
    return counts


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Re-run status inference for a user's applications.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--user-id", type=int, required=True, help="User id to re-infer")
    parser.add_argument("--dry-run", action="store_true", help="Compute results but do not write to DB")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    init_db()

    db: Session = SessionLocal()
    try:
        store = SqlAlchemyStore(db)
        print("Re-inference starting:", f"user_id={args.user_id}", f"dry_run={args.dry_run}")
        if args.dry_run:
            counts = _dry_run(store, args.user_id)
        else:
            counts = _reinfer(store, args.user_id)
        print("Re-inference done:", counts)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
