#!/usr/bin/env python3
"""Backfill missing milestone progress rows for every call (idempotent)."""

import argparse

from admissions import create_app
from admissions.models import db
from admissions.models.directory import Call
from admissions.services.progress_initializer import sync_for_call
from admissions.services.progress_query import get_call_overview


def sync_milestone_progress(*, apply: bool = False, call_id: str | None = None) -> dict:
    """Report (dry-run) or create (apply) the missing PENDING rows per call."""
    summary = {
        "mode": "apply" if apply else "dry-run",
        "processed_calls": 0,
        "created": 0,
        "would_create": 0,
        "errors": 0,
    }

    query = Call.query.order_by(Call.created_at.asc())
    if call_id:
        query = query.filter_by(id=call_id)
    calls = query.all()

    print(f"[INFO] mode={summary['mode']} calls={len(calls)}")

    for call in calls:
        summary["processed_calls"] += 1
        prefix = f"call_id={call.id} name={call.name!r}"

        try:
            overview = get_call_overview(call.id)
            missing = sum(a["missing"] for a in overview["applications"])
            if not missing:
                print(f"[SKIP] {prefix} reason=fully_initialized "
                      f"applications={overview['application_count']} "
                      f"milestones={overview['milestone_count']}")
                continue

            if not apply:
                summary["would_create"] += missing
                print(f"[PLAN] {prefix} missing_rows={missing}")
                continue

            created = sync_for_call(call.id)
            summary["created"] += created
            print(f"[CREATE] {prefix} rows={created}")

        except Exception as exc:
            db.session.rollback()
            summary["errors"] += 1
            print(f"[ERROR] {prefix} error={exc}")

    print(
        "[SUMMARY] "
        f"mode={summary['mode']} "
        f"processed={summary['processed_calls']} "
        f"created={summary['created']} "
        f"would_create={summary['would_create']} "
        f"errors={summary['errors']}"
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Backfill missing milestone progress rows (idempotent)."
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Preview only; do not write data")
    mode.add_argument("--apply", action="store_true", help="Persist backfill changes")
    parser.add_argument("--call-id", default=None, help="Limit to one call")
    args = parser.parse_args()

    apply = bool(args.apply)
    if not args.dry_run and not args.apply:
        print("[INFO] No mode specified; defaulting to --dry-run")

    app = create_app()
    with app.app_context():
        result = sync_milestone_progress(apply=apply, call_id=args.call_id)

    if apply and result["errors"] > 0:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
