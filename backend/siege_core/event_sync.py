"""Mirror WOM group competitions into the events table and award siege points."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .points import (
    Placement,
    classify_event_type,
    competition_status,
    competition_winner,
    parse_timestamp,
    rank_participants,
)
from .ranks import safe_int
from .store import ClanStore
from .wom import WomClient


logger = logging.getLogger(__name__)

PROCESSING_LEASE = dt.timedelta(hours=1)
MAX_COMPETITION_AGE = dt.timedelta(days=30)
RECENT_WINDOW = dt.timedelta(hours=24)


@dataclass
class PointsAwardResult:
    competition_id: Any
    processed: bool = False
    skipped_reason: Optional[str] = None
    awards: List[Dict[str, Any]] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)


@dataclass
class EventSyncSummary:
    created: int = 0
    updated: int = 0
    skipped_old: int = 0
    deferred: int = 0
    points_processed: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _iso(moment: dt.datetime) -> str:
    return moment.astimezone(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _priority(competition: Dict[str, Any], now: dt.datetime) -> int:
    status = competition_status(competition.get("startsAt"), competition.get("endsAt"), now)
    if status == "completed":
        ended = parse_timestamp(competition.get("endsAt"))
        if ended is not None and now - ended <= RECENT_WINDOW:
            return 0
        return 3
    if status == "active":
        return 1
    return 2


def build_event_record(competition: Dict[str, Any], now: dt.datetime) -> Dict[str, Any]:
    metric = str(competition.get("metric") or "")
    title = competition.get("title") or f"WOM Competition {competition.get('id')}"
    return {
        "name": title,
        "wom_id": competition.get("id"),
        "is_wom": True,
        "type": classify_event_type(title),
        "start_date": competition.get("startsAt"),
        "end_date": competition.get("endsAt"),
        "metric": metric or None,
        "status": competition_status(competition.get("startsAt"), competition.get("endsAt"), now),
        "description": f"WOM Competition: {metric.replace('_', ' ')}",
    }


def process_competition_results(
    store: ClanStore,
    wom: WomClient,
    competition_id: Any,
    now: dt.datetime | None = None,
) -> PointsAwardResult:
    """Award siege points for a finished competition exactly once.

    ``processing_started_at`` acts as a one hour lease so overlapping runs
    skip the competition, and it is released again if any step of the award fails.
    """
    now = now or dt.datetime.now(dt.UTC)
    result = PointsAwardResult(competition_id=competition_id)

    event = store.fetch_event_by_wom_id(competition_id)
    if event is None:
        raise ValueError(f"Event for competition {competition_id} not found")
    if event.get("points_processed"):
        result.skipped_reason = "already_processed"
        return result

    started = parse_timestamp(event.get("processing_started_at"))
    if started is not None and now - started < PROCESSING_LEASE:
        result.skipped_reason = "in_progress"
        return result

    store.update_event_by_wom_id(competition_id, {"processing_started_at": _iso(now)})
    try:
        _award_points(store, wom, competition_id, event, result)
    except RuntimeError:
        store.update_event_by_wom_id(competition_id, {"processing_started_at": None})
        raise
    return result


def _match_members(
    store: ClanStore,
    event: Dict[str, Any],
    placements: List[Placement],
    result: PointsAwardResult,
) -> tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    by_username: Dict[str, Dict[str, Any]] = {}
    by_name: Dict[str, Dict[str, Any]] = {}
    for member in store.fetch_score_table():
        if member.get("wom_name"):
            by_username.setdefault(str(member["wom_name"]).lower(), member)
        if member.get("name"):
            by_name.setdefault(str(member["name"]).lower(), member)

    points_data: List[Dict[str, Any]] = []
    member_updates: List[Dict[str, Any]] = []
    for placement in placements:
        member = by_username.get(placement.username.lower()) or by_name.get(placement.display_name.lower())
        if member is None:
            result.unmatched.append(placement.display_name or placement.username)
            continue
        old_score = safe_int(member.get("siege_score"))
        points_data.append(
            {
                "event_id": event.get("id"),
                "wom_id": member.get("wom_id"),
                "player_name": member.get("name") or placement.display_name,
                "placement": placement.place,
                "points_awarded": placement.points,
                "progress": placement.gained,
            }
        )
        member_updates.append(
            {
                "wom_id": member.get("wom_id"),
                "oldScore": old_score,
                "newScore": old_score + placement.points,
                "pointsToAward": placement.points,
            }
        )
    return points_data, member_updates


def _award_points(
    store: ClanStore,
    wom: WomClient,
    competition_id: Any,
    event: Dict[str, Any],
    result: PointsAwardResult,
) -> None:
    details = wom.get_competition(competition_id)
    participations = details.get("participations")
    if not isinstance(participations, list) or not participations:
        store.update_event_by_wom_id(
            competition_id,
            {
                "status": "completed",
                "points_processed": True,
                "skipped_reason": "no_participants",
                "processing_started_at": None,
            },
        )
        result.processed = True
        result.skipped_reason = "no_participants"
        return

    points_data, member_updates = _match_members(store, event, rank_participants(participations), result)

    if result.unmatched:
        logger.info(
            "Competition %s: %s participants not in roster (%s)",
            competition_id,
            len(result.unmatched),
            ", ".join(result.unmatched),
        )

    if member_updates:
        try:
            store.award_competition_points(competition_id, points_data, member_updates)
        except RuntimeError as exc:
            raise RuntimeError(f"Failed to award points for competition {competition_id}: {exc}") from exc

    store.update_event_by_wom_id(
        competition_id,
        {"status": "completed", "points_processed": True, "processing_started_at": None},
    )
    result.processed = True
    result.awards = points_data
    logger.info("Awarded points to %s members for competition %s", len(points_data), competition_id)


def sync_wom_events(
    store: ClanStore,
    wom: WomClient,
    group_id: Any,
    now: dt.datetime | None = None,
    max_per_run: int = 10,
) -> EventSyncSummary:
    now = now or dt.datetime.now(dt.UTC)
    summary = EventSyncSummary()

    competitions = wom.get_group_competitions(group_id)
    candidates: List[Dict[str, Any]] = []
    for competition in competitions:
        if competition.get("id") is None:
            continue
        ended = parse_timestamp(competition.get("endsAt"))
        if ended is not None and now - ended > MAX_COMPETITION_AGE:
            summary.skipped_old += 1
            continue
        candidates.append(competition)

    candidates.sort(key=lambda item: (_priority(item, now), item.get("startsAt") or ""))
    if len(candidates) > max_per_run:
        summary.deferred = len(candidates) - max_per_run
        candidates = candidates[:max_per_run]

    existing = store.fetch_events_by_wom_ids(item["id"] for item in candidates)

    for competition in candidates:
        wom_id = competition["id"]
        record = build_event_record(competition, now)
        current = existing.get(str(wom_id))
        try:
            if record["status"] == "completed":
                if current and current.get("winner_username"):
                    record["winner_username"] = current["winner_username"]
                else:
                    details = wom.get_competition(wom_id)
                    record["winner_username"] = competition_winner(details.get("participations") or [])

            if current:
                store.update_event(current["id"], record)
                summary.updated += 1
            else:
                current = store.insert_event(record)
                summary.created += 1

            if record["status"] == "completed" and not current.get("points_processed"):
                outcome = process_competition_results(store, wom, wom_id, now=now)
                if outcome.processed:
                    summary.points_processed += 1
        except (RuntimeError, ValueError) as exc:
            logger.warning("Failed to sync competition %s (%s)", wom_id, exc)
            summary.errors.append(f"{wom_id}: {exc}")

    return summary
