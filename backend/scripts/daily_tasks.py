"""Run the daily WOM member and event syncs in order."""

from __future__ import annotations

import logging

from siege_core.jobs import SUPABASE_ENV, WOM_ENV, check_environment, run_daily_tasks


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    check_environment(SUPABASE_ENV + WOM_ENV)
    results = run_daily_tasks()

    failed = 0
    for name, outcome in results.items():
        if outcome["success"]:
            print(f"{name}: ok {outcome['summary']}")
        else:
            failed += 1
            print(f"{name}: FAILED {outcome['error']}")
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
