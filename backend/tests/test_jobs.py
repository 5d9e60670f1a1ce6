from __future__ import annotations

import logging

import pytest

from fakes import FakeSupabase, FakeWom, membership, player_details
from siege_core import ClanStore
from siege_core import jobs as jobs_module


def test_check_environment_reports_without_values(monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://secret-project.supabase.co")
    with caplog.at_level(logging.INFO, logger="siege_core.jobs"):
        missing = jobs_module.check_environment(("SUPABASE_URL", "WOM_GROUP_ID"))

    assert missing == ["WOM_GROUP_ID"]
    assert "SUPABASE_URL: set" in caplog.text
    assert "WOM_GROUP_ID: missing" in caplog.text
    assert "secret-project" not in caplog.text


def test_member_sync_requires_group_id(clan_store: ClanStore) -> None:
    with pytest.raises(RuntimeError, match="WOM_GROUP_ID"):
        jobs_module.run_member_sync(clan_store, FakeWom())


def test_daily_tasks_run_in_order(monkeypatch: pytest.MonkeyPatch, clan_store: ClanStore, fake: FakeSupabase) -> None:
    monkeypatch.setenv("WOM_GROUP_ID", "2928")
    wom = FakeWom(
        group={"memberships": [membership(1, "abe")]},
        players={"1": player_details(xp=100, level=10)},
    )

    results = jobs_module.run_daily_tasks(clan_store, wom)

    assert list(results) == ["member_sync", "event_sync"]
    assert results["member_sync"]["success"]
    assert results["member_sync"]["summary"]["new_members"] == 1
    assert results["event_sync"]["success"]
    assert [kind for kind, _ in wom.calls][:2] == ["group", "player"]
    assert ("competitions", "2928") in wom.calls


def test_daily_tasks_continue_after_failure(monkeypatch: pytest.MonkeyPatch, clan_store: ClanStore, fake: FakeSupabase) -> None:
    monkeypatch.setenv("WOM_GROUP_ID", "2928")
    fake.failing_tables.add("members")

    results = jobs_module.run_daily_tasks(clan_store, FakeWom())

    assert results["member_sync"]["success"] is False
    assert "members exploded" in results["member_sync"]["error"]
    assert results["event_sync"]["success"] is True
