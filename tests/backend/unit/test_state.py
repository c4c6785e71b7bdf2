from datetime import datetime, timedelta, timezone

from matchmaker.backend.engine import RoundPosition
from matchmaker.backend.models import GameConfig
from matchmaker.backend.state import build_status_snapshot, next_round_at


START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _config() -> GameConfig:
    return GameConfig(interval_seconds=60, start_time=START, end_time=START + timedelta(hours=1))


def test_next_round_at_is_game_start_before_the_game_begins() -> None:
    assert next_round_at(_config(), START - timedelta(minutes=5)) == START


def test_next_round_at_rounds_up_to_the_next_interval() -> None:
    now = START + timedelta(seconds=61)

    assert next_round_at(_config(), now) == START + timedelta(seconds=120)


def test_next_round_at_is_none_after_game_end_or_without_config() -> None:
    assert next_round_at(_config(), START + timedelta(hours=2)) is None
    assert next_round_at(None, START) is None


def test_build_status_snapshot_reports_round_and_liveness() -> None:
    last_round = START + timedelta(seconds=30)

    snapshot = build_status_snapshot(
        config=_config(),
        position=RoundPosition(phase="HOST_REPLY", round=2, turn_index=1),
        last_successful_round_at=last_round,
        consecutive_failures=0,
        roster_size=2,
        standings=[("agent-b", 9), ("agent-a", 4)],
        now=START + timedelta(seconds=30),
    )

    assert snapshot["config"]["interval"] == 60
    assert snapshot["nextRoundAt"] == (START + timedelta(seconds=60)).isoformat()
    assert snapshot["round"] == {"number": 2, "phase": "HOST_REPLY", "turnIndex": 1}
    assert snapshot["lastSuccessfulRoundAt"] == last_round.isoformat()
    assert snapshot["rosterSize"] == 2
    assert snapshot["contestantCount"] == 2
    assert snapshot["standings"][0] == {"agentId": "agent-b", "score": 9}


def test_build_status_snapshot_without_config_or_scheduler() -> None:
    snapshot = build_status_snapshot(
        config=None,
        position=None,
        last_successful_round_at=None,
        consecutive_failures=3,
        roster_size=0,
    )

    assert snapshot["config"] is None
    assert snapshot["nextRoundAt"] is None
    assert snapshot["round"] is None
    assert snapshot["consecutiveFailures"] == 3
    assert snapshot["standings"] == []
    assert snapshot["now"].endswith("+00:00")
