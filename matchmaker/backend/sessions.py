"""Session bridge mapping external user ids to internal identities and rooms."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
import logging
from typing import Callable
import uuid

from .errors import ValidationError
from .models import Session
from .store import LedgerStore


logger = logging.getLogger(__name__)

SESSION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "matchmaker:sessions")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def derive_session_ids(external_user_id: str, now: datetime) -> tuple[str, str]:
    """Namespace-scoped ids; the timestamp keeps restarts from colliding."""
    stamp = int(now.timestamp() * 1000)
    identity_id = uuid.uuid5(SESSION_NAMESPACE, f"user-{external_user_id}-{stamp}")
    room_id = uuid.uuid5(SESSION_NAMESPACE, f"room-{identity_id}-{stamp}")
    return str(identity_id), str(room_id)


class SessionBridge:
    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or _utc_now
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def cached(self, external_user_id: str) -> Session | None:
        return self._sessions.get(external_user_id)

    async def clear(self) -> None:
        """Forget every cached session; the next contact derives fresh ids."""
        async with self._lock:
            self._sessions.clear()

    async def get_or_create_session(self, external_user_id: str, user_name: str | None = None) -> Session:
        """Return the session for ``external_user_id``, creating it on first contact.

        Identity and room ids never change once assigned; only
        ``last_interaction`` moves. The account row is upserted on every call and
        a failed upsert leaves the cache untouched.
        """
        if not external_user_id:
            raise ValidationError("userId is required")

        async with self._lock:
            now = self._clock()
            session = self._sessions.get(external_user_id)
            if session is None:
                session = await self._store.read_session(external_user_id)

            if session is None:
                identity_id, room_id = derive_session_ids(external_user_id, now)
                session = Session(
                    external_user_id=external_user_id,
                    identity_id=identity_id,
                    room_id=room_id,
                    last_interaction=now,
                )
                logger.info(
                    "new session external_user_id=%s identity_id=%s room_id=%s",
                    external_user_id,
                    identity_id,
                    room_id,
                )
            else:
                session = replace(session, last_interaction=now)
                logger.info("reusing session external_user_id=%s identity_id=%s", external_user_id, session.identity_id)

            await self._store.upsert_account(
                session.identity_id,
                user_name or external_user_id,
                external_user_id,
                f"{external_user_id}@example.com",
            )
            await self._store.save_session(session)
            self._sessions[external_user_id] = session
            return session
