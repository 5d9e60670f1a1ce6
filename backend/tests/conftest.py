from __future__ import annotations

import pytest

from fakes import FakeSupabase
from siege_core import ClanStore


ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_SERVICE_KEY",
    "SUPABASE_ANON_KEY",
    "SUPABASE_SCHEMA",
    "API_KEY",
    "ALLOWED_ORIGIN",
    "ALLOWED_ORIGINS",
    "WOM_API_KEY",
    "WOM_GROUP_ID",
    "WOM_API_BASE",
    "DISCORD_WEBHOOK_URL",
    "DISCORD_ANNIVERSARY_WEBHOOK_URL",
)


@pytest.fixture(autouse=True)
def reset_env(monkeypatch: pytest.MonkeyPatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def supabase_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://supabase.test")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")


@pytest.fixture
def fake() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clan_store(supabase_env, fake: FakeSupabase) -> ClanStore:
    return ClanStore(transport=fake.transport())
