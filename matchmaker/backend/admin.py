"""Administrative operations: game config and game reset."""

from __future__ import annotations

from datetime import datetime
import logging

from .errors import ValidationError
from .models import GameConfig, as_utc
from .security import require_admin
from .sessions import SessionBridge
from .store import LedgerStore


logger = logging.getLogger(__name__)


class GameAdmin:
    def __init__(self, store: LedgerStore, admin_token: str, sessions: SessionBridge | None = None) -> None:
        self._store = store
        self._admin_token = admin_token
        self._sessions = sessions

    async def set_game_config(
        self, credential: str, interval_seconds: float | None, start_time: datetime | None, end_time: datetime | None
    ) -> GameConfig:
        require_admin(credential, self._admin_token)
        start_time, end_time = as_utc(start_time), as_utc(end_time)
        if start_time is None or end_time is None:
            raise ValidationError("startTime and endTime are required")
        if end_time <= start_time:
            raise ValidationError("endTime must be after startTime")
        if interval_seconds is None or interval_seconds <= 0:
            raise ValidationError("interval must be a positive number of seconds")

        config = GameConfig(interval_seconds=float(interval_seconds), start_time=start_time, end_time=end_time)
        await self._store.upsert_game_config(config)
        logger.info("game config set: interval=%ss start=%s end=%s", interval_seconds, start_time, end_time)
        return config

    async def reset_game(self, credential: str) -> None:
        """Irreversibly wipe conversations, scores, sessions and derivation state."""
        require_admin(credential, self._admin_token)
        await self._store.truncate_all()
        if self._sessions is not None:
            await self._sessions.clear()
        logger.warning("game state reset")
