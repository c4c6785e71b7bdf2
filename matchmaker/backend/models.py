"""Domain models for the round table, the ledger and the game-end protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def as_utc(value: datetime | None) -> datetime | None:
    """Read a timestamp without an offset as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class AgentProfile:
    agent_id: str
    name: str
    ip_id: str | None = None
    wallet_address: str | None = None
    wallet_private_key: str | None = None
    license_term_id: str | None = None
    ip_registration_tx: str | None = None
    avatar_url: str | None = None


@dataclass(frozen=True)
class AgentMessage:
    text: str
    score: int | None = None


@dataclass(frozen=True)
class Session:
    external_user_id: str
    identity_id: str
    room_id: str
    last_interaction: datetime


@dataclass(frozen=True)
class ConversationEntry:
    entry_id: int
    agent_id: str
    contestant_message: str
    contestant_message_time: datetime
    room_id: str
    host_response: str | None = None
    host_response_time: datetime | None = None
    interaction_score: int | None = None
    topic: str | None = None

    @property
    def is_open(self) -> bool:
        return self.host_response is None


@dataclass(frozen=True)
class GameConfig:
    interval_seconds: float
    start_time: datetime
    end_time: datetime
    config_id: int = 1


@dataclass(frozen=True)
class ChatReply:
    reply_text: str
    score: int
    session: Session


@dataclass(frozen=True)
class RegisteredIdentity:
    identity_id: str
    tx_ref: str


@dataclass(frozen=True)
class DerivedIdentity:
    identity_id: str
    name: str
    parent_ids: tuple[str, str]
    tx_ref: str
    license_ids: tuple[str, str]
    derivative_confirmation: str
    persona: dict[str, Any]
    wallet_address: str | None = None
    wallet_private_key: str | None = None


@dataclass(frozen=True)
class GameEndProgress:
    """Step cursor for the game-end protocol; survives a crash between steps."""

    winner_id: str
    winner_score: int
    persona: dict[str, Any]
    identity_id: str
    tx_ref: str
    host_license_id: str | None = None
    winner_license_id: str | None = None
    derivative_confirmation: str | None = None
    completed: bool = False


@dataclass(frozen=True)
class GameEndResult:
    winner_id: str
    winner_name: str
    winner_score: int
    derived_persona: dict[str, Any]
    derived_identity_id: str
    license_ids: tuple[str, ...] = field(default_factory=tuple)
