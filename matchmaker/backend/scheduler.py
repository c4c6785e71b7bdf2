"""Round-table scheduler and the external chat entry point.

One round: the host opens a topic, then every contestant in roster order answers
it and immediately receives a private host reply with a score. Rounds never
overlap. A failed round is logged and followed by a cooldown that grows
exponentially up to a ceiling; the loop itself never exits on its own.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Awaitable, Callable, Sequence
import uuid

from .engine import CONTESTANT_TURN, HOST_REPLY, OPEN_TOPIC, PAUSE, RoundPosition, advance
from .errors import GatewayError, ValidationError
from .gateway import AgentGateway
from .ledger import ConversationLedger
from .models import AgentMessage, AgentProfile, ChatReply
from .sessions import SESSION_NAMESPACE, SessionBridge
from .store import LedgerStore


logger = logging.getLogger(__name__)

TOPIC_PROMPT = "Start a group discussion with a thought-provoking dating or relationship question"

Sleep = Callable[[float], Awaitable[None]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def game_room_id(host_agent_id: str) -> str:
    return str(uuid.uuid5(SESSION_NAMESPACE, f"round-table-{host_agent_id}"))


class RoundTableScheduler:
    def __init__(
        self,
        *,
        gateway: AgentGateway,
        ledger: ConversationLedger,
        store: LedgerStore,
        sessions: SessionBridge,
        host: AgentProfile,
        contestants: Sequence[AgentProfile],
        room_id: str | None = None,
        default_interval: float = 5.0,
        turn_delay: float = 5.0,
        contestant_gap: float = 1.0,
        cooldown: float = 25.0,
        cooldown_max: float = 300.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._store = store
        self._sessions = sessions
        self.host = host
        self.contestants = list(contestants)
        self.room_id = room_id or game_room_id(host.agent_id)
        self.default_interval = default_interval
        self.turn_delay = turn_delay
        self.contestant_gap = contestant_gap
        self.cooldown = cooldown
        self.cooldown_max = cooldown_max
        self._sleep = sleep
        self._clock = clock

        self.position = RoundPosition()
        self.last_successful_round_at: datetime | None = None
        self.consecutive_failures = 0

    def cooldown_delay(self) -> float:
        exponent = max(self.consecutive_failures - 1, 0)
        return min(self.cooldown * (2**exponent), self.cooldown_max)

    async def round_interval(self) -> float:
        config = await self._store.read_game_config()
        if config is None:
            return self.default_interval
        return config.interval_seconds

    async def register_agents(self) -> None:
        for profile in [self.host, *self.contestants]:
            await self._store.upsert_agent_profile(profile)
            logger.info("registered agent profile %s (%s)", profile.agent_id, profile.name)

    async def run_forever(self) -> None:
        """Run rounds until the task is cancelled."""
        logger.info("host: %s, contestants: %s", self.host.name, ", ".join(c.name for c in self.contestants))
        try:
            await self.register_agents()
        except Exception:  # noqa: BLE001
            logger.exception("agent profile registration failed; continuing with round table")

        while True:
            try:
                await self.run_round()
                interval = await self.round_interval()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                self.consecutive_failures += 1
                delay = self.cooldown_delay()
                logger.exception(
                    "round %s failed (%s in a row); cooling down %.0fs",
                    self.position.round,
                    self.consecutive_failures,
                    delay,
                )
                self.position = RoundPosition(round=self.position.round + 1)
                await self._sleep(delay)
                continue

            self.consecutive_failures = 0
            self.last_successful_round_at = self._clock()
            logger.info("waiting for next round table discussion: %.0f seconds", interval)
            await self._sleep(interval)

    async def run_round(self) -> list[dict]:
        """Play one round from OPEN_TOPIC to PAUSE and return the engine events."""
        events: list[dict] = []
        if self.position.phase == PAUSE:
            result = advance(self.position, True, len(self.contestants))
            events.extend(result.engine_events)
            self.position = result.position
        elif self.position.phase != OPEN_TOPIC:
            self.position = RoundPosition(round=self.position.round)
        logger.info("%s starting round table discussion (round %s)", self.host.name, self.position.round)

        topic: str | None = None
        contestant_text: str | None = None
        while self.position.phase != PAUSE:
            phase = self.position.phase
            contestant = self.contestants[self.position.turn_index] if phase != OPEN_TOPIC else None

            if phase == OPEN_TOPIC:
                topic = await self.open_topic()
                succeeded = topic is not None
            elif phase == CONTESTANT_TURN:
                contestant_text = await self.contestant_turn(contestant, topic)
                succeeded = contestant_text is not None
            else:
                reply = await self.host_reply(contestant, contestant_text, topic)
                succeeded = reply is not None
                if succeeded:
                    await self._sleep(self.turn_delay)

            result = advance(self.position, succeeded, len(self.contestants))
            events.extend(result.engine_events)
            self.position = result.position

            finished_turn = phase == HOST_REPLY or (phase == CONTESTANT_TURN and not succeeded)
            if finished_turn:
                await self._sleep(self.contestant_gap)
        return events

    async def open_topic(self) -> str | None:
        messages = await self._gateway.send_message(
            self.host.agent_id, TOPIC_PROMPT, self.host.agent_id, self.host.name, self.room_id
        )
        if not messages:
            logger.error("failed to get %s's opening message", self.host.name)
            return None
        topic = messages[0].text
        logger.info("%s opens discussion: %s", self.host.name, topic)
        await self._ledger.record_topic(self.host.agent_id, topic, self.room_id)
        return topic

    async def contestant_turn(self, contestant: AgentProfile, topic: str | None) -> str | None:
        logger.info("%s responding to %s's question", contestant.name, self.host.name)
        try:
            messages = await self._gateway.send_message(
                contestant.agent_id,
                f"[Respond to {self.host.name}'s question: {topic}]",
                contestant.agent_id,
                contestant.name,
                self.room_id,
            )
        except GatewayError as exc:
            logger.warning("failed to generate message from %s: %s", contestant.name, exc)
            return None
        if not messages:
            logger.warning("%s produced no message", contestant.name)
            return None

        text = messages[-1].text
        logger.info("%s: %s", contestant.name, text)
        await self._ledger.record_contestant_turn(contestant.agent_id, text, self.room_id, topic)
        return text

    async def host_reply(self, contestant: AgentProfile, text: str | None, topic: str | None) -> AgentMessage | None:
        try:
            messages = await self._gateway.send_message(
                self.host.agent_id, text or "", contestant.agent_id, contestant.name, self.room_id
            )
        except GatewayError as exc:
            logger.warning("%s failed to reply to %s: %s", self.host.name, contestant.name, exc)
            return None
        if not messages:
            logger.warning("%s produced no reply to %s", self.host.name, contestant.name)
            return None

        reply = messages[-1]
        score = reply.score or 0
        logger.info("%s -> %s (score %s): %s", self.host.name, contestant.name, score, reply.text)
        await self._ledger.record_host_reply(contestant.agent_id, reply.text, score, topic)
        return reply

    async def handle_external_chat(self, external_user_id: str, user_name: str | None, message: str) -> ChatReply:
        """Play one contestant turn for an outside user, outside the round cadence."""
        if not message or not external_user_id:
            raise ValidationError("message and userId are required")

        session = await self._sessions.get_or_create_session(external_user_id, user_name)
        await self._ledger.record_contestant_turn(session.identity_id, message, session.room_id)

        messages = await self._gateway.send_message(
            self.host.agent_id, message, session.identity_id, user_name or "External User", session.room_id
        )
        if not messages:
            raise GatewayError(f"Failed to get response from {self.host.name}")

        reply = messages[-1]
        score = reply.score or 0
        await self._ledger.record_host_reply(session.identity_id, reply.text, score)
        logger.info("external chat - user %s: %s", external_user_id, message)
        logger.info("external chat - %s: %s", self.host.name, reply.text)
        return ChatReply(reply_text=reply.text, score=score, session=session)
