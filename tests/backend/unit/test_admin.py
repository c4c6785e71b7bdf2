from datetime import datetime, timedelta, timezone

import pytest

from matchmaker.backend.admin import GameAdmin
from matchmaker.backend.errors import Unauthorized, ValidationError
from matchmaker.backend.sessions import SessionBridge


START = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_set_game_config_persists_window(store) -> None:
    admin = GameAdmin(store, admin_token="secret")

    config = await admin.set_game_config("secret", 30, START, START + timedelta(hours=2))

    assert config.interval_seconds == 30.0
    assert await store.read_game_config() == config


@pytest.mark.asyncio
async def test_set_game_config_validates_window_and_interval(store) -> None:
    admin = GameAdmin(store, admin_token="secret")

    with pytest.raises(ValidationError):
        await admin.set_game_config("secret", 30, START, START)
    with pytest.raises(ValidationError):
        await admin.set_game_config("secret", 0, START, START + timedelta(hours=1))
    with pytest.raises(ValidationError):
        await admin.set_game_config("secret", 30, None, START)
    assert await store.read_game_config() is None


@pytest.mark.asyncio
async def test_admin_operations_require_token(store) -> None:
    admin = GameAdmin(store, admin_token="secret")
    await store.add_score("agent-a", 5)

    with pytest.raises(Unauthorized):
        await admin.set_game_config("nope", 30, START, START + timedelta(hours=1))
    with pytest.raises(Unauthorized):
        await admin.reset_game("nope")
    assert await store.read_score("agent-a") == 5


@pytest.mark.asyncio
async def test_reset_game_wipes_scores_but_keeps_config(store) -> None:
    admin = GameAdmin(store, admin_token="secret")
    config = await admin.set_game_config("secret", 30, START, START + timedelta(hours=1))
    await store.add_score("agent-a", 5)
    await store.insert_entry("agent-a", "hi", "room-1")

    await admin.reset_game("secret")

    assert await store.read_score("agent-a") is None
    assert await store.read_entries("agent-a") == []
    assert await store.read_game_config() == config


@pytest.mark.asyncio
async def test_set_game_config_reads_naive_times_as_utc(store) -> None:
    admin = GameAdmin(store, admin_token="secret")
    naive_start = START.replace(tzinfo=None)

    config = await admin.set_game_config("secret", 30, naive_start, naive_start + timedelta(hours=1))

    assert config.start_time == START
    assert config.end_time.tzinfo is not None


@pytest.mark.asyncio
async def test_reset_game_forgets_cached_sessions(store) -> None:
    ticks = iter(START + timedelta(seconds=second) for second in range(10))
    sessions = SessionBridge(store, clock=lambda: next(ticks))
    admin = GameAdmin(store, admin_token="secret", sessions=sessions)
    before = await sessions.get_or_create_session("user-1", "Sam")

    await admin.reset_game("secret")

    assert sessions.cached("user-1") is None
    after = await sessions.get_or_create_session("user-1", "Sam")
    assert after.identity_id != before.identity_id
