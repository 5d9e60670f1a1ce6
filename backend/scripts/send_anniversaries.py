"""Post today's clan join anniversaries to Discord."""

from __future__ import annotations

import logging
import sys

from siege_core.jobs import SUPABASE_ENV, check_environment, run_anniversaries


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    check_environment(SUPABASE_ENV + ("DISCORD_WEBHOOK_URL", "DISCORD_ANNIVERSARY_WEBHOOK_URL"))
    try:
        sent = run_anniversaries()
    except RuntimeError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"Anniversaries: {len(sent)}")
    for item in sent:
        print(f"  - {item['name']} ({item['years']})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
