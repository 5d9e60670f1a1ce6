from __future__ import annotations

import pytest

from fakes import FakeSupabase
from siege_core import ClanStore
from siege_core.store import eq, in_list


def test_filter_helpers_quote_values() -> None:
    assert eq(True) == "eq.true"
    assert eq(42) == "eq.42"
    assert in_list(["a", 'b"c', "d,e", "f\\g"]) == 'in.("a","b\\"c","d,e","f\\\\g")'


def test_unconfigured_store_raises(fake: FakeSupabase) -> None:
    store = ClanStore(transport=fake.transport())
    with pytest.raises(RuntimeError, match="configuration is incomplete"):
        store.fetch_events()


def test_fetch_active_members_filters_and_orders(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.tables["members"] = [
        {"wom_id": 2, "name": "Zed", "active": True, "siege_score": 4},
        {"wom_id": 1, "name": "Abe", "active": True, "siege_score": 9},
        {"wom_id": 3, "name": "Gone", "active": False, "siege_score": 1},
    ]

    rows = clan_store.fetch_active_members()

    assert [row["name"] for row in rows] == ["Abe", "Zed"]
    request = fake.requests[-1]
    assert request.headers["apikey"] == "service-key"
    assert request.headers["Authorization"] == "Bearer service-key"
    assert request.url.params["active"] == "eq.true"


def test_leaderboard_orders_by_score(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.tables["members"] = [
        {"wom_id": 1, "name": "Abe", "active": True, "siege_score": 9},
        {"wom_id": 2, "name": "Zed", "active": True, "siege_score": 40},
    ]
    assert [row["name"] for row in clan_store.fetch_leaderboard()] == ["Zed", "Abe"]


def test_custom_schema_sets_profile_headers(monkeypatch: pytest.MonkeyPatch, supabase_env, fake: FakeSupabase) -> None:
    monkeypatch.setenv("SUPABASE_SCHEMA", "clan")
    store = ClanStore(transport=fake.transport())
    store.fetch_events()
    request = fake.requests[-1]
    assert request.headers["Accept-Profile"] == "clan"
    assert request.headers["Content-Profile"] == "clan"


def test_upstream_error_becomes_runtime_error(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.failing_tables.add("events")
    with pytest.raises(RuntimeError, match="events exploded"):
        clan_store.fetch_events()


def test_events_by_wom_ids_uses_quoted_in_filter(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.tables["events"] = [{"id": 1, "wom_id": 11}, {"id": 2, "wom_id": 12}, {"id": 3, "wom_id": 13}]

    found = clan_store.fetch_events_by_wom_ids([11, 13, None])

    assert set(found) == {"11", "13"}
    assert fake.requests[-1].url.params["wom_id"] == 'in.("11","13")'
    assert clan_store.fetch_events_by_wom_ids([]) == {}


def test_admin_rpcs_send_expected_arguments(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.rpc_results["admin_update_member"] = {"wom_id": 5}

    assert clan_store.admin_update_member(5, {"name": "New"}) == {"wom_id": 5}
    clan_store.admin_delete_member(5)
    clan_store.admin_toggle_member_visibility(5, True)
    clan_store.admin_toggle_user_admin("user-1", False)

    assert fake.rpc_calls == [
        ("admin_update_member", {"p_wom_id": 5, "p_updates": {"name": "New"}}),
        ("admin_delete_member", {"p_wom_id": 5}),
        ("admin_toggle_member_visibility", {"member_id": 5, "is_hidden": True}),
        ("admin_toggle_user_admin", {"p_user_id": "user-1", "p_is_admin": False}),
    ]


def test_rpc_error_carries_message(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.rpc_errors["admin_delete_member"] = "Member not found"
    with pytest.raises(RuntimeError, match="Member not found"):
        clan_store.admin_delete_member(99)


def test_race_lifecycle(clan_store: ClanStore, fake: FakeSupabase) -> None:
    race = clan_store.create_race(
        {"title": "Race to 99", "creator_id": "user-1"},
        [{"wom_id": 1, "player_name": "Abe", "metric": "woodcutting", "target_value": 13_034_431}],
    )
    assert race["participants"][0]["race_id"] == race["id"]
    assert race["participants"][0]["current_value"] == 0

    participant_id = fake.rows("race_participants")[0]["id"]
    clan_store.update_race(
        race["id"],
        {"title": "Race to 99 (updated)"},
        [
            {"id": participant_id, "current_value": 500},
            {"wom_id": 2, "player_name": "Zed", "metric": "woodcutting", "target_value": 13_034_431},
        ],
    )
    assert fake.rows("races")[0]["title"] == "Race to 99 (updated)"
    assert [row["current_value"] for row in fake.rows("race_participants")] == [500, 0]

    clan_store.delete_race(race["id"])
    assert fake.rows("races") == []
    assert fake.rows("race_participants") == []


def test_update_missing_race_raises(clan_store: ClanStore) -> None:
    with pytest.raises(ValueError, match="Race not found"):
        clan_store.update_race(123, {"title": "x"})


def test_get_auth_user(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.add_user("user-1", "good-token")
    assert clan_store.get_auth_user("good-token")["id"] == "user-1"
    assert fake.requests[-1].headers["apikey"] == "anon-key"
    with pytest.raises(ValueError):
        clan_store.get_auth_user("bad-token")


def test_sign_in_with_password(clan_store: ClanStore, fake: FakeSupabase) -> None:
    fake.passwords["abe@example.com"] = ("hunter2", "user-1")
    session = clan_store.sign_in_with_password("abe@example.com", "hunter2")
    assert session["access_token"] == "access-user-1"
    assert fake.requests[-1].url.params["grant_type"] == "password"
    with pytest.raises(ValueError, match="Invalid credentials"):
        clan_store.sign_in_with_password("abe@example.com", "wrong")


def test_update_member_requires_wom_id(clan_store: ClanStore) -> None:
    with pytest.raises(ValueError):
        clan_store.update_member(None, {"name": "x"})
