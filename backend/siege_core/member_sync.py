"""Reconcile the clan roster in Supabase against the Wise Old Man group."""

from __future__ import annotations

import datetime as dt
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .ranks import safe_int
from .store import ClanStore
from .wom import WomClient


logger = logging.getLogger(__name__)


@dataclass
class MemberSyncSummary:
    new_members: int = 0
    deactivated: int = 0
    renamed: int = 0
    deactivated_names: List[str] = field(default_factory=list)
    total: int = 0
    updated: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _iso(moment: dt.datetime) -> str:
    return moment.astimezone(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _roster_from_group(group: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    memberships = group.get("memberships")
    if not isinstance(memberships, list):
        raise RuntimeError("WOM group payload is missing a memberships list")

    roster: Dict[str, Dict[str, Any]] = {}
    for membership in memberships:
        if not isinstance(membership, dict):
            continue
        player = membership.get("player") if isinstance(membership.get("player"), dict) else {}
        username = str(player.get("username") or "").strip()
        player_id = membership.get("playerId", player.get("id"))
        if not username or player_id is None:
            continue
        roster[str(player_id)] = {
            "wom_id": player_id,
            "wom_name": username,
            "name": str(player.get("displayName") or username).strip(),
            "womrole": membership.get("role"),
        }
    return roster


def _overall_stats(player: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    snapshot = player.get("latestSnapshot") if isinstance(player.get("latestSnapshot"), dict) else {}
    data = snapshot.get("data") if isinstance(snapshot.get("data"), dict) else {}
    skills = data.get("skills") if isinstance(data.get("skills"), dict) else {}
    overall = skills.get("overall") if isinstance(skills.get("overall"), dict) else {}

    xp = overall.get("experience", player.get("exp"))
    level = overall.get("level")
    return (
        safe_int(xp) if xp is not None else None,
        safe_int(level) if level is not None else None,
    )


def _append_history(history: Any, old_name: Optional[str]) -> List[str]:
    items = [str(item) for item in history] if isinstance(history, list) else []
    if old_name and old_name not in items:
        items.append(old_name)
    return items


def find_name_match(member: Dict[str, Any], candidates: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the roster entry that most likely is ``member`` under a new WOM id.

    Exact (case-insensitive) name matches win. Otherwise a single substring
    match is accepted; with several, the one whose display name contains the
    stored name is used. Ambiguous cases return ``None``.
    """
    old_names = {str(value).lower() for value in (member.get("name"), member.get("wom_name")) if value}
    if not old_names:
        return None

    exact = [
        candidate
        for candidate in candidates
        if candidate["wom_name"].lower() in old_names or candidate["name"].lower() in old_names
    ]
    if exact:
        return exact[0]

    def overlaps(candidate: Dict[str, Any]) -> bool:
        names = (candidate["wom_name"].lower(), candidate["name"].lower())
        return any(old in new or new in old for old in old_names for new in names)

    partial = [candidate for candidate in candidates if overlaps(candidate)]
    if len(partial) == 1:
        return partial[0]
    preferred = [
        candidate
        for candidate in partial
        if any(old in candidate["name"].lower() for old in old_names)
    ]
    return preferred[0] if preferred else None


def sync_wom_members(
    store: ClanStore,
    wom: WomClient,
    group_id: Any,
    delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    now: dt.datetime | None = None,
) -> MemberSyncSummary:
    now = now or dt.datetime.now(dt.UTC)
    now_iso = _iso(now)
    summary = MemberSyncSummary()

    roster = _roster_from_group(wom.get_group(group_id))
    summary.total = len(roster)
    logger.info("WOM group %s has %s members", group_id, len(roster))

    existing_by_id: Dict[str, Dict[str, Any]] = {}
    for row in store.fetch_roster():
        if row.get("wom_id") is not None:
            existing_by_id[str(row["wom_id"])] = row

    new_ids = [wom_id for wom_id in roster if wom_id not in existing_by_id]
    missing = [
        row
        for wom_id, row in existing_by_id.items()
        if wom_id not in roster and row.get("active") is not False
    ]

    for member in missing:
        old_id = member["wom_id"]
        try:
            match = find_name_match(member, [roster[wom_id] for wom_id in new_ids])
            if match is not None:
                new_ids.remove(str(match["wom_id"]))
                store.update_member(
                    old_id,
                    {
                        "wom_id": match["wom_id"],
                        "wom_name": match["wom_name"],
                        "name": match["name"],
                        "womrole": match["womrole"],
                        "name_history": _append_history(member.get("name_history"), member.get("name")),
                        "updated_at": now_iso,
                    },
                )
                summary.renamed += 1
                existing_by_id[str(match["wom_id"])] = {**member, **match}
                logger.info("Re-keyed %s from WOM id %s to %s", member.get("name"), old_id, match["wom_id"])
                continue

            store.update_member(
                old_id,
                {
                    "active": False,
                    "left_date": now_iso,
                    "notes": (
                        "Automatically marked inactive - no longer in WOM group as of "
                        f"{now.date().isoformat()}"
                    ),
                    "updated_at": now_iso,
                },
            )
            summary.deactivated += 1
            summary.deactivated_names.append(str(member.get("name") or member.get("wom_name") or old_id))
            logger.info("Marked %s inactive", member.get("name"))
        except (RuntimeError, ValueError) as exc:
            summary.errors += 1
            logger.warning("Failed to reconcile missing member %s (%s)", old_id, exc)

    first_call = True

    def pause() -> None:
        nonlocal first_call
        if not first_call and delay > 0:
            sleep(delay)
        first_call = False

    for wom_id in new_ids:
        entry = roster[wom_id]
        try:
            pause()
            player = wom.get_player_by_id(wom_id)
            xp, level = _overall_stats(player)
            store.insert_member(
                {
                    "wom_id": entry["wom_id"],
                    "wom_name": entry["wom_name"],
                    "name": entry["name"],
                    "current_lvl": level or 0,
                    "current_xp": xp or 0,
                    "first_lvl": level or 0,
                    "first_xp": xp or 0,
                    "ehb": round(float(player.get("ehb") or 0)),
                    "womrole": entry["womrole"],
                    "siege_score": 0,
                    "active": True,
                    "join_date": player.get("registeredAt") or now_iso,
                    "name_history": [],
                }
            )
            summary.new_members += 1
            logger.info("Added new member %s", entry["name"])
        except (RuntimeError, ValueError) as exc:
            summary.errors += 1
            logger.warning("Failed to add member %s (%s)", entry["wom_name"], exc)

    for wom_id, entry in roster.items():
        current = existing_by_id.get(wom_id)
        if current is None:
            continue
        try:
            pause()
            player = wom.get_player_by_id(wom_id)
            xp, level = _overall_stats(player)
            ehb = player.get("ehb")
            values: Dict[str, Any] = {
                "name": entry["name"],
                "current_xp": xp if xp is not None else current.get("current_xp"),
                "current_lvl": level if level is not None else current.get("current_lvl"),
                "ehb": round(float(ehb)) if ehb is not None else current.get("ehb"),
                "womrole": entry["womrole"],
                "active": True,
                "updated_at": now_iso,
            }
            previous_name = current.get("wom_name")
            if previous_name and previous_name.lower() != entry["wom_name"].lower():
                values["wom_name"] = entry["wom_name"]
                values["name_history"] = _append_history(current.get("name_history"), previous_name)
                summary.renamed += 1
            if current.get("active") is False:
                values["left_date"] = None
            store.update_member(wom_id, values)
            summary.updated += 1
        except (RuntimeError, ValueError) as exc:
            summary.errors += 1
            logger.warning("Failed to update member %s (%s)", entry["wom_name"], exc)

    return summary
