"""Entry points shared by the scheduled CLI scripts."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List

from .anniversaries import send_anniversaries
from .event_sync import EventSyncSummary, sync_wom_events
from .member_sync import MemberSyncSummary, sync_wom_members
from .store import ClanStore
from .wom import WomClient


logger = logging.getLogger(__name__)

SUPABASE_ENV = ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY")
WOM_ENV = ("WOM_GROUP_ID", "WOM_API_KEY")


def check_environment(names: Iterable[str]) -> List[str]:
    """Log which variables are present without revealing values; return the missing ones."""
    missing = []
    for name in names:
        present = bool(os.getenv(name))
        logger.info("%s: %s", name, "set" if present else "missing")
        if not present:
            missing.append(name)
    return missing


def _group_id() -> str:
    group_id = os.getenv("WOM_GROUP_ID", "").strip()
    if not group_id:
        raise RuntimeError("WOM_GROUP_ID is not configured")
    return group_id


def run_member_sync(store: ClanStore | None = None, wom: WomClient | None = None) -> MemberSyncSummary:
    return sync_wom_members(store or ClanStore(), wom or WomClient(), _group_id())


def run_event_sync(store: ClanStore | None = None, wom: WomClient | None = None) -> EventSyncSummary:
    return sync_wom_events(store or ClanStore(), wom or WomClient(), _group_id())


def run_anniversaries(store: ClanStore | None = None) -> List[Dict[str, Any]]:
    sent = send_anniversaries(store or ClanStore())
    return [{"name": item.name, "years": item.years} for item in sent]


def run_daily_tasks(store: ClanStore | None = None, wom: WomClient | None = None) -> Dict[str, Dict[str, Any]]:
    """Run the member sync then the event sync, recording each outcome."""
    store = store or ClanStore()
    wom = wom or WomClient()
    results: Dict[str, Dict[str, Any]] = {}
    for name, task in (("member_sync", run_member_sync), ("event_sync", run_event_sync)):
        try:
            summary = task(store, wom)
        except RuntimeError as exc:
            logger.error("%s failed: %s", name, exc)
            results[name] = {"success": False, "error": str(exc)}
        else:
            results[name] = {"success": True, "summary": summary.as_dict()}
    return results
