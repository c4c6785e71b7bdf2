"""Conversation ledger: turn logging, reply closing and score accumulation."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from .errors import ValidationError
from .models import as_utc
from .store import LedgerStore


logger = logging.getLogger(__name__)


class ConversationLedger:
    def __init__(self, store: LedgerStore, host_name: str = "host") -> None:
        self._store = store
        self.host_name = host_name

    async def record_contestant_turn(
        self, identity_id: str, message: str, room_id: str, topic: str | None = None
    ) -> int:
        """Insert a new open entry; a prior open entry is never merged into it."""
        if not identity_id or not message:
            raise ValidationError("identity and message are required")
        entry_id = await self._store.insert_entry(identity_id, message, room_id, topic)
        logger.debug("opened entry %s for %s", entry_id, identity_id)
        return entry_id

    async def record_topic(self, host_id: str, topic: str, room_id: str) -> int:
        """Log the host's round-opening topic as an already closed entry."""
        return await self._store.insert_topic_entry(host_id, topic, room_id)

    async def record_host_reply(
        self, identity_id: str, reply_text: str, score: int, topic: str | None = None
    ) -> int | None:
        """Add ``score`` to the identity's total, then close its latest open entry.

        The score is applied even when no open entry exists; in that case the
        reply does not show up in the transcript and None is returned.
        """
        total = await self._store.add_score(identity_id, score)
        entry_id = await self._store.close_latest_open_entry(identity_id, reply_text, score, topic)
        if entry_id is None:
            logger.warning("host reply for %s had no open entry; score %s recorded without transcript", identity_id, score)
        else:
            logger.info("closed entry %s for %s score=%s total=%s", entry_id, identity_id, score, total)
        return entry_id

    async def transcripts(
        self, start: datetime | None, end: datetime | None = None, agent_name: str | None = None
    ) -> list[dict[str, Any]]:
        if start is None:
            raise ValidationError("startTime parameter is required")
        start = as_utc(start)
        end = as_utc(end) or datetime.now(timezone.utc)
        rows = await self._store.read_transcript_rows(start, end, agent_name)
        return group_transcripts(rows, host_name=self.host_name)


def group_transcripts(rows: list[dict[str, Any]], host_name: str) -> list[dict[str, Any]]:
    """Fold joined score/entry rows into one record per identity.

    Rows arrive grouped by identity and ordered by contestant-message time; each
    entry contributes the contestant line followed by the host line if closed.
    A host topic entry contributes its topic once.
    """
    agents: dict[str, dict[str, Any]] = {}
    for row in rows:
        agent_id = row["agent_id"]
        agent = agents.get(agent_id)
        if agent is None:
            display_name = row.get("username") or row.get("name") or agent_id
            details = row.get("details") or {}
            agent = {
                "agentId": agent_id,
                "name": display_name,
                "score": row.get("cumulative_score") or 0,
                "profile": {
                    "name": row.get("name") or agent_id,
                    "picture_url": row.get("avatar_url"),
                    "description": details.get("description") or f"Contestant {row.get('name') or agent_id}",
                },
                "messages": [],
                "topics": [],
            }
            agents[agent_id] = agent

        if not row.get("contestant_message"):
            continue
        agent["messages"].append(
            {"name": agent["name"], "content": row["contestant_message"], "created_at": row["contestant_message_time"]}
        )
        if row.get("host_response") and not _is_topic_entry(row):
            agent["messages"].append(
                {"name": host_name, "content": row["host_response"], "created_at": row["host_response_time"]}
            )
        topic = row.get("topic")
        if topic and topic not in agent["topics"]:
            agent["topics"].append(topic)
    return list(agents.values())


def _is_topic_entry(row: dict[str, Any]) -> bool:
    # topic entries are written closed, with one timestamp for both lines
    return (
        row.get("contestant_message") == row.get("host_response")
        and row.get("contestant_message_time") == row.get("host_response_time")
    )
