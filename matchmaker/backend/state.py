"""Status snapshot builders for the game."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import math
from typing import Any

from .engine import RoundPosition
from .models import GameConfig


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def next_round_at(config: GameConfig | None, now: datetime) -> datetime | None:
    """Next round boundary on the config's cadence, None outside the game window."""
    if config is None:
        return None
    if now <= config.start_time:
        return config.start_time
    elapsed = (now - config.start_time).total_seconds()
    rounds = math.ceil(elapsed / config.interval_seconds)
    candidate = config.start_time + timedelta(seconds=rounds * config.interval_seconds)
    if candidate > config.end_time:
        return None
    return candidate


def build_status_snapshot(
    config: GameConfig | None,
    position: RoundPosition | None,
    last_successful_round_at: datetime | None,
    consecutive_failures: int,
    roster_size: int,
    standings: list[tuple[str, int]] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    standings = standings or []
    return {
        "now": now.isoformat(),
        "config": None
        if config is None
        else {
            "interval": config.interval_seconds,
            "startTime": config.start_time.isoformat(),
            "endTime": config.end_time.isoformat(),
        },
        "nextRoundAt": _iso(next_round_at(config, now)),
        "round": None
        if position is None
        else {"number": position.round, "phase": position.phase, "turnIndex": position.turn_index},
        "lastSuccessfulRoundAt": _iso(last_successful_round_at),
        "consecutiveFailures": consecutive_failures,
        "rosterSize": roster_size,
        "contestantCount": len(standings),
        "standings": [{"agentId": agent_id, "score": score} for agent_id, score in standings],
    }
