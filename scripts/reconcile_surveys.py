#!/usr/bin/env python3
"""
Detect and repair inconsistent surveys from the command line.

Categories:
- orphaned           creator user row is gone          -> hard delete (survey, questions, responses)
- inactive_creator   creator user row is deactivated   -> soft delete
- without_questions  survey has no questions           -> soft delete
- stale              old survey that never got answers -> soft delete

Default is DRY RUN (lists candidates per category). Use --apply to mutate.

Usage:
  python scripts/reconcile_surveys.py
  python scripts/reconcile_surveys.py --days-old 60 --show 50
  python scripts/reconcile_surveys.py --apply
  python scripts/reconcile_surveys.py --apply --category orphaned
  python scripts/reconcile_surveys.py --apply --json

Exit codes: 0 ok, 1 cleanup failed (partially or fully), 2 invalid argument /
configuration, 3 another reconciliation run holds the lock.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional, TextIO

REPO_ROOT = Path(__file__).resolve().parents[1]
BACKEND_ROOT = REPO_ROOT / "backend"
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from survey_admin.services.config import Settings
from survey_admin.services.db import ConfigError, get_dsn, mask_dsn
from survey_admin.services.deps import build_store
from survey_admin.services.detectors import Category
from survey_admin.services.errors import ConflictError, InvalidArgument, TransientStoreError
from survey_admin.services.orchestrator import STAGE_ORDER, ReconciliationOrchestrator

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CONFLICT = 3

CATEGORY_CHOICES = [c.value for c in Category] + ["all"]


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Reconcile inconsistent surveys")
    ap.add_argument("--apply", action="store_true", help="Actually mutate (default: dry-run)")
    ap.add_argument(
        "--category",
        choices=CATEGORY_CHOICES,
        default="all",
        help="Restrict to one category (default: all, i.e. comprehensive cleanup)",
    )
    ap.add_argument(
        "--days-old",
        type=int,
        default=None,
        help="Staleness threshold in days (default: RECONCILE_DEFAULT_DAYS_OLD or 30)",
    )
    ap.add_argument(
        "--stage-timeout-seconds",
        type=float,
        default=None,
        help="Per-stage transaction budget (0 = none). Default: RECONCILE_STAGE_TIMEOUT_SECONDS",
    )
    ap.add_argument("--show", type=int, default=20, help="How many candidates to print per category (dry-run)")
    ap.add_argument("--json", action="store_true", help="Print machine-readable JSON instead of text")
    ap.add_argument(
        "--ensure-schema",
        action="store_true",
        help="Create the survey tables if missing (postgres backend only)",
    )
    return ap


def _categories(selected: str) -> List[Category]:
    if selected == "all":
        return list(STAGE_ORDER)
    return [Category(selected)]


def dry_run(orchestrator: ReconciliationOrchestrator, args, out: TextIO) -> int:
    listers = {
        Category.ORPHANED: orchestrator.list_orphaned,
        Category.INACTIVE_CREATOR: orchestrator.list_inactive_creator,
        Category.WITHOUT_QUESTIONS: orchestrator.list_without_questions,
        Category.STALE: lambda: orchestrator.list_stale(args.days_old),
    }
    results = {}
    for category in _categories(args.category):
        surveys = listers[category]()
        results[category] = surveys

    if args.json:
        payload = {
            "dryRun": True,
            "daysOld": args.days_old,
            "categories": {
                c.value: {
                    "action": orchestrator.policy.action_for(c).value,
                    "count": len(surveys),
                    "surveys": [s.to_dict() for s in surveys[: max(0, args.show)]],
                }
                for c, surveys in results.items()
            },
        }
        print(json.dumps(payload, indent=2), file=out)
        return EXIT_OK

    print(f"[DRY RUN] daysOld={args.days_old}", file=out)
    for category, surveys in results.items():
        action = orchestrator.policy.action_for(category).value
        print(f"\n{category.value}: {len(surveys)} candidate(s) -> {action}", file=out)
        for s in surveys[: max(0, args.show)]:
            print(
                f"- survey_id={s.id} status={s.status.value} creator_id={s.creator_id} "
                f"questions={s.question_count} responses={s.response_count} "
                f"created_at={s.created_at.isoformat()} title={s.title!r}",
                file=out,
            )
        if len(surveys) > args.show:
            print(f"  ... {len(surveys) - args.show} more", file=out)
    print("\nRun with --apply to mutate.", file=out)
    return EXIT_OK


def apply(orchestrator: ReconciliationOrchestrator, args, out: TextIO) -> int:
    if args.category == "all":
        report = orchestrator.run_comprehensive_cleanup(args.days_old)
        if args.json:
            print(json.dumps(report.to_dict(), indent=2), file=out)
        else:
            print(f"{report.message}", file=out)
            print(f"  state:                        {report.state.value}", file=out)
            print(f"  orphaned deleted:             {report.orphan_deleted}", file=out)
            print(f"  inactive creator soft-deleted: {report.inactive_creator_soft_deleted}", file=out)
            print(f"  without questions cleaned:    {report.empty_cleaned}", file=out)
            print(f"  stale cleaned (>= {report.days_old_threshold}d): {report.stale_cleaned}", file=out)
            if report.failed_stages:
                print(f"  failed stages:                {', '.join(report.failed_stages)}", file=out)
        return EXIT_OK if report.success else EXIT_FAILED

    category = Category(args.category)
    mutators = {
        Category.ORPHANED: orchestrator.purge_orphaned,
        Category.INACTIVE_CREATOR: orchestrator.soft_delete_inactive_creator,
        Category.WITHOUT_QUESTIONS: orchestrator.cleanup_empty,
        Category.STALE: lambda: orchestrator.cleanup_stale(args.days_old),
    }
    count = mutators[category]()
    if args.json:
        print(json.dumps({"category": category.value, "count": count}), file=out)
    else:
        print(f"{category.value}: {orchestrator.policy.action_for(category).value} applied to {count} survey(s)", file=out)
    return EXIT_OK


def run(orchestrator: ReconciliationOrchestrator, args, out: Optional[TextIO] = None) -> int:
    out = out or sys.stdout
    t0 = time.monotonic()
    try:
        code = apply(orchestrator, args, out) if args.apply else dry_run(orchestrator, args, out)
    except InvalidArgument as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return EXIT_INVALID
    except ConflictError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return EXIT_CONFLICT
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INVALID
    except TransientStoreError as e:
        print(f"ERROR: store unavailable: {e.message}", file=sys.stderr)
        return EXIT_FAILED
    logging.getLogger("survey_admin.reconcile").info("done in %.1fs", time.monotonic() - t0)
    return code


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INVALID
    if args.days_old is None:
        args.days_old = settings.default_days_old
    timeout = settings.stage_timeout if args.stage_timeout_seconds is None else (args.stage_timeout_seconds or None)

    try:
        if settings.store_backend == "postgres":
            logging.getLogger("survey_admin.reconcile").info("DSN(masked)=%s", mask_dsn(get_dsn()))
        store = build_store(settings)
        if args.ensure_schema and store.backend == "postgres":
            store.ensure_schema()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_INVALID
    except TransientStoreError as e:
        print(f"ERROR: store unavailable: {e.message}", file=sys.stderr)
        return EXIT_FAILED

    orchestrator = ReconciliationOrchestrator(store, stage_timeout_seconds=timeout)
    return run(orchestrator, args)


if __name__ == "__main__":
    raise SystemExit(main())
