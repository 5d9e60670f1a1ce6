from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


POINTS_BY_PLACE = {1: 15, 2: 10, 3: 5}
PARTICIPATION_POINTS = 2


@dataclass
class Placement:
    username: str
    display_name: str
    gained: float
    place: int
    points: int


def points_for_place(place: int) -> int:
    return POINTS_BY_PLACE.get(place, PARTICIPATION_POINTS)


def parse_timestamp(value: Any) -> Optional[dt.datetime]:
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = dt.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def competition_status(starts_at: Any, ends_at: Any, now: dt.datetime) -> str:
    start = parse_timestamp(starts_at)
    end = parse_timestamp(ends_at)
    if end is not None and now > end:
        return "completed"
    if start is not None and now >= start:
        return "active"
    return "upcoming"


def classify_event_type(title: Optional[str]) -> str:
    lowered = (title or "").lower()
    if "sotw" in lowered or "skill" in lowered:
        return "skilling"
    if "botw" in lowered or "boss" in lowered:
        return "bossing"
    if "raid" in lowered:
        return "raids"
    return "other"


def _gained(participation: Dict[str, Any]) -> float:
    progress = participation.get("progress")
    if not isinstance(progress, dict):
        return 0.0
    try:
        return float(progress.get("gained") or 0)
    except (TypeError, ValueError):
        return 0.0


def rank_participants(participations: Iterable[Dict[str, Any]]) -> List[Placement]:
    """Order competitors by gain and assign places and points.

    Zero or negative gains score nothing. Equal gains share a place and the
    place after a tie is the next consecutive number, so two players tied
    for first are followed by a single second place.
    """
    candidates = []
    for item in participations:
        if not isinstance(item, dict):
            continue
        gained = _gained(item)
        if gained <= 0:
            continue
        player = item.get("player") if isinstance(item.get("player"), dict) else {}
        username = str(player.get("username") or "").strip()
        display_name = str(player.get("displayName") or username).strip()
        if not username and not display_name:
            continue
        candidates.append((gained, username, display_name))

    candidates.sort(key=lambda candidate: candidate[0], reverse=True)

    placements: List[Placement] = []
    place = 1
    idx = 0
    while idx < len(candidates):
        current_gain = candidates[idx][0]
        tie_group = [candidates[idx]]
        idx += 1
        while idx < len(candidates) and candidates[idx][0] == current_gain:
            tie_group.append(candidates[idx])
            idx += 1
        points = points_for_place(place)
        for gained, username, display_name in tie_group:
            placements.append(
                Placement(
                    username=username,
                    display_name=display_name,
                    gained=gained,
                    place=place,
                    points=points,
                )
            )
        place += 1
    return placements


def competition_winner(participations: Iterable[Dict[str, Any]]) -> Optional[str]:
    best: Optional[Dict[str, Any]] = None
    best_gain = 0.0
    for item in participations:
        if not isinstance(item, dict):
            continue
        gained = _gained(item)
        if best is None or gained > best_gain:
            best = item
            best_gain = gained
    if best is None:
        return None
    player = best.get("player") if isinstance(best.get("player"), dict) else {}
    return player.get("displayName") or player.get("username") or None
