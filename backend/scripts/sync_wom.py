"""Reconcile the members table with the Wise Old Man group roster."""

from __future__ import annotations

import logging
import sys

from siege_core.jobs import SUPABASE_ENV, WOM_ENV, check_environment, run_member_sync


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    check_environment(SUPABASE_ENV + WOM_ENV)
    try:
        summary = run_member_sync()
    except RuntimeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(
        f"Members: {summary.total} in group, {summary.new_members} new, "
        f"{summary.updated} updated, {summary.renamed} renamed, {summary.deactivated} deactivated"
    )
    for name in summary.deactivated_names:
        print(f"  - left: {name}")
    if summary.errors:
        print(f"{summary.errors} members failed to sync", file=sys.stderr)
    return 1 if summary.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
