from __future__ import annotations

import calendar
import datetime as dt
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .store import ClanStore


logger = logging.getLogger(__name__)

EMBED_COLOUR = 15844367
THUMBNAIL_URL = "https://oldschool.runescape.wiki/images/Party_hat_%28red%29.png"


@dataclass
class Anniversary:
    name: str
    years: int
    join_date: dt.date


def _parse_join_date(value: Any) -> Optional[dt.date]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        try:
            return dt.date.fromisoformat(text[:10])
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.UTC)
    return parsed.date()


def _celebrated_on(joined: dt.date, year: int) -> dt.date:
    if joined.month == 2 and joined.day == 29 and not calendar.isleap(year):
        return dt.date(year, 2, 28)
    return dt.date(year, joined.month, joined.day)


def find_anniversaries(members: Iterable[Dict[str, Any]], today: dt.date) -> List[Anniversary]:
    """Members whose join date falls on ``today`` (UTC) at least a year ago.

    Leap-day joiners are celebrated on 28 February in common years.
    """
    found: List[Anniversary] = []
    for member in members:
        name = member.get("name") or member.get("wom_name")
        joined = _parse_join_date(member.get("join_date"))
        if joined is None:
            logger.warning("Skipping %s: unreadable join date %r", name, member.get("join_date"))
            continue
        years = today.year - joined.year
        if years < 1 or _celebrated_on(joined, today.year) != today:
            continue
        found.append(Anniversary(name=str(name), years=years, join_date=joined))
    return found


def _year_label(years: int) -> str:
    return f"{years} year" if years == 1 else f"{years} years"


def build_single_message(anniversary: Anniversary) -> Dict[str, Any]:
    return {
        "embeds": [
            {
                "title": "Clan Anniversary!",
                "description": (
                    f"Congratulations to **{anniversary.name}** on "
                    f"{_year_label(anniversary.years)} in the clan today!"
                ),
                "color": EMBED_COLOUR,
                "thumbnail": {"url": THUMBNAIL_URL},
                "author": {"name": "Clan Celebration"},
                "footer": {"text": f"Joined {anniversary.join_date.isoformat()}"},
            }
        ]
    }


def build_group_message(anniversaries: List[Anniversary]) -> Dict[str, Any]:
    lines = [f"• **{item.name}** - {_year_label(item.years)}" for item in anniversaries]
    return {
        "embeds": [
            {
                "title": "Clan Anniversaries Today!",
                "description": "Congratulations to our members celebrating today:\n\n" + "\n".join(lines),
                "color": EMBED_COLOUR,
                "thumbnail": {"url": THUMBNAIL_URL},
                "author": {"name": "Clan Celebration"},
                "footer": {"text": f"{len(anniversaries)} anniversaries today"},
            }
        ]
    }


def send_anniversaries(
    store: ClanStore,
    today: dt.date | None = None,
    webhook_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
) -> List[Anniversary]:
    today = today or dt.datetime.now(dt.UTC).date()
    anniversaries = find_anniversaries(store.fetch_anniversary_candidates(), today)
    if not anniversaries:
        logger.info("No anniversaries on %s", today.isoformat())
        return anniversaries

    url = webhook_url or os.getenv("DISCORD_ANNIVERSARY_WEBHOOK_URL") or os.getenv("DISCORD_WEBHOOK_URL")
    if not url:
        raise RuntimeError("No Discord webhook configured for anniversaries")

    if len(anniversaries) == 1:
        payload = build_single_message(anniversaries[0])
    else:
        payload = build_group_message(anniversaries)

    try:
        with httpx.Client(timeout=10.0, transport=transport) as client:
            response = client.post(url, json=payload)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise RuntimeError(f"Discord webhook rejected anniversary message ({exc.response.status_code})") from exc
    except httpx.HTTPError as exc:
        raise RuntimeError(f"Failed to post anniversary message: {exc}") from exc

    logger.info("Posted %s anniversaries", len(anniversaries))
    return anniversaries
