"""Mirror WOM competitions into events and award siege points for finished ones."""

from __future__ import annotations

import logging
import sys

from siege_core.jobs import SUPABASE_ENV, WOM_ENV, check_environment, run_event_sync


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    check_environment(SUPABASE_ENV + WOM_ENV)
    try:
        summary = run_event_sync()
    except RuntimeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(
        f"Events: {summary.created} created, {summary.updated} updated, "
        f"{summary.points_processed} scored, {summary.skipped_old} too old, {summary.deferred} deferred"
    )
    for item in summary.errors:
        print(f"  - {item}", file=sys.stderr)
    return 1 if summary.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
