from siege_core.ranks import (
    appropriate_rank,
    member_track,
    needs_rank_update,
    progress_to_next_rank,
    safe_int,
)


def test_safe_int() -> None:
    assert safe_int(None) == 0
    assert safe_int("") == 0
    assert safe_int("abc") == 0
    assert safe_int("12.9") == 12
    assert safe_int(42) == 42


def test_skiller_rank_uses_clan_xp() -> None:
    member = {"womrole": "opal", "current_xp": 20_000_000, "first_xp": 10_000_000}
    assert member_track(member) == "skiller"
    assert appropriate_rank(member) == "Emerald"
    assert progress_to_next_rank(member) == 5_000_000


def test_fighter_rank_uses_ehb() -> None:
    member = {"womrole": "mentor", "ehb": 350}
    assert member_track(member) == "fighter"
    assert appropriate_rank(member) == "Leader"
    assert progress_to_next_rank(member) == 150


def test_top_rank_has_no_next() -> None:
    member = {"womrole": "tzkal", "ehb": 4000}
    assert appropriate_rank(member) == "TzKal"
    assert progress_to_next_rank(member) == 0


def test_needs_rank_update() -> None:
    assert needs_rank_update({"wom_id": 1, "womrole": "mentor", "ehb": 350})
    assert not needs_rank_update({"wom_id": 1, "womrole": "leader", "ehb": 350})
    assert needs_rank_update({"wom_id": 1, "womrole": "supervisor", "ehb": 750})


def test_needs_rank_update_skips_ineligible_members() -> None:
    assert not needs_rank_update({"wom_id": 1, "womrole": "mentor", "ehb": 350, "hidden": True})
    assert not needs_rank_update({"womrole": "mentor", "ehb": 350})
    assert not needs_rank_update({"wom_id": 1, "womrole": "owner", "ehb": 350})
    assert not needs_rank_update({"wom_id": 1, "womrole": None, "ehb": 350})


def test_negative_clan_xp_has_no_rank() -> None:
    member = {"wom_id": 1, "womrole": "sapphire", "current_xp": 1_000, "first_xp": 5_000}
    assert appropriate_rank(member) is None
    assert not needs_rank_update(member)
