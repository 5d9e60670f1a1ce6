from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple


SKILLER_RANKS: List[Tuple[str, int]] = [
    ("Opal", 0),
    ("Sapphire", 3_000_000),
    ("Emerald", 8_000_000),
    ("Ruby", 15_000_000),
    ("Diamond", 40_000_000),
    ("Dragonstone", 90_000_000),
    ("Onyx", 150_000_000),
    ("Zenyte", 500_000_000),
]

FIGHTER_RANKS: List[Tuple[str, int]] = [
    ("Mentor", 0),
    ("Prefect", 100),
    ("Leader", 300),
    ("Supervisor", 500),
    ("Superior", 700),
    ("Executive", 900),
    ("Senator", 1100),
    ("Monarch", 1300),
    ("TzKal", 1500),
]


def safe_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def member_track(member: Dict[str, Any]) -> Optional[str]:
    role = str(member.get("womrole") or "").lower()
    if not role:
        return None
    if any(name.lower() in role for name, _ in SKILLER_RANKS):
        return "skiller"
    if any(name.lower() in role for name, _ in FIGHTER_RANKS):
        return "fighter"
    return None


def _ladder_value(member: Dict[str, Any], track: str) -> int:
    if track == "skiller":
        return safe_int(member.get("current_xp")) - safe_int(member.get("first_xp"))
    return safe_int(member.get("ehb"))


def _ladder(track: str) -> List[Tuple[str, int]]:
    return SKILLER_RANKS if track == "skiller" else FIGHTER_RANKS


def appropriate_rank(member: Dict[str, Any]) -> Optional[str]:
    track = member_track(member)
    if track is None:
        return None
    value = _ladder_value(member, track)
    earned = None
    for name, threshold in _ladder(track):
        if value >= threshold:
            earned = name
    return earned


def progress_to_next_rank(member: Dict[str, Any]) -> int:
    track = member_track(member)
    if track is None:
        return 0
    value = _ladder_value(member, track)
    for _, threshold in _ladder(track):
        if threshold > value:
            return threshold - value
    return 0


def needs_rank_update(member: Dict[str, Any]) -> bool:
    if member.get("hidden") or not member.get("wom_id"):
        return False
    earned = appropriate_rank(member)
    if earned is None:
        return False
    return earned.lower() not in str(member.get("womrole") or "").lower()
