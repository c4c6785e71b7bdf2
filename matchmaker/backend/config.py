"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .models import AgentProfile


_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BackendSettings:
    database_url: str | None
    host: str
    port: int
    agent_gateway_url: str
    registry_url: str
    admin_token: str
    round_interval_seconds: float
    turn_delay_seconds: float
    contestant_gap_seconds: float
    cooldown_seconds: float
    cooldown_max_seconds: float
    gateway_timeout_seconds: float
    round_table_enabled: bool
    room_id: str | None
    host_agent: AgentProfile | None
    contestants: tuple[AgentProfile, ...]
    child_wallet_address: str | None
    child_wallet_private_key: str | None
    allowed_origins: tuple[str, ...] = ()


def load_agent_profile(prefix: str) -> AgentProfile | None:
    """Read one agent's roster entry from ``{prefix}_*`` variables."""
    agent_id = os.getenv(f"{prefix}_ID")
    if not agent_id:
        return None
    return AgentProfile(
        agent_id=agent_id,
        name=os.getenv(f"{prefix}_NAME", agent_id),
        ip_id=os.getenv(f"{prefix}_IP_ID"),
        wallet_address=os.getenv(f"{prefix}_WALLET_ADDRESS"),
        wallet_private_key=os.getenv(f"{prefix}_WALLET_PRIVATE_KEY"),
        license_term_id=os.getenv(f"{prefix}_LICENSE_TERM_ID"),
        ip_registration_tx=os.getenv(f"{prefix}_IP_REGISTRATION_TXN_HASH"),
        avatar_url=os.getenv(f"{prefix}_PICTURE_URL"),
    )


def load_contestants() -> tuple[AgentProfile, ...]:
    contestants: list[AgentProfile] = []
    index = 1
    while True:
        profile = load_agent_profile(f"MATCHMAKER_CONTESTANT{index}")
        if profile is None:
            break
        contestants.append(profile)
        index += 1
    return tuple(contestants)


def load_allowed_origins() -> tuple[str, ...]:
    """Comma-separated browser origins allowed to call the API."""
    raw = os.getenv("MATCHMAKER_ALLOWED_ORIGINS", "")
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def load_settings() -> BackendSettings:
    port_raw = os.getenv("MATCHMAKER_PORT", "8000")
    return BackendSettings(
        database_url=os.getenv("MATCHMAKER_DATABASE_URL"),
        host=os.getenv("MATCHMAKER_HOST", "127.0.0.1"),
        port=int(port_raw),
        agent_gateway_url=os.getenv("MATCHMAKER_AGENT_GATEWAY_URL", "http://localhost:3000"),
        registry_url=os.getenv("MATCHMAKER_REGISTRY_URL", "http://localhost:3100"),
        admin_token=os.getenv("MATCHMAKER_ADMIN_TOKEN", ""),
        round_interval_seconds=float(os.getenv("MATCHMAKER_ROUND_INTERVAL_SECONDS", "5")),
        turn_delay_seconds=float(os.getenv("MATCHMAKER_TURN_DELAY_SECONDS", "5")),
        contestant_gap_seconds=float(os.getenv("MATCHMAKER_CONTESTANT_GAP_SECONDS", "1")),
        cooldown_seconds=float(os.getenv("MATCHMAKER_COOLDOWN_SECONDS", "25")),
        cooldown_max_seconds=float(os.getenv("MATCHMAKER_COOLDOWN_MAX_SECONDS", "300")),
        gateway_timeout_seconds=float(os.getenv("MATCHMAKER_GATEWAY_TIMEOUT_SECONDS", "120")),
        round_table_enabled=os.getenv("MATCHMAKER_ROUND_TABLE_ENABLED", "true").strip().lower() in _TRUE_VALUES,
        room_id=os.getenv("MATCHMAKER_ROOM_ID") or None,
        host_agent=load_agent_profile("MATCHMAKER_HOST_AGENT"),
        contestants=load_contestants(),
        child_wallet_address=os.getenv("MATCHMAKER_CHILD_WALLET_ADDRESS"),
        child_wallet_private_key=os.getenv("MATCHMAKER_CHILD_WALLET_PRIVATE_KEY"),
        allowed_origins=load_allowed_origins(),
    )
