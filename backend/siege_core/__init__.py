"""Clan roster, events and siege-score services shared by the API and jobs."""

from .store import ClanStore
from .wom import WomApiError, WomClient
from .points import Placement, rank_participants
from .member_sync import sync_wom_members
from .event_sync import process_competition_results, sync_wom_events

__all__ = [
    "ClanStore",
    "WomApiError",
    "WomClient",
    "Placement",
    "rank_participants",
    "sync_wom_members",
    "process_competition_results",
    "sync_wom_events",
]
