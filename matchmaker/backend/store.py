"""Persistence interfaces and implementations for game ledger data."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import json
from typing import Any, AsyncIterator, Protocol

from matchmaker.backend.errors import PersistenceError
from matchmaker.backend.models import (
    AgentProfile,
    ConversationEntry,
    DerivedIdentity,
    GameConfig,
    GameEndProgress,
    Session,
)


TRANSCRIPT_COLUMNS = (
    "agent_id",
    "cumulative_score",
    "name",
    "username",
    "avatar_url",
    "details",
    "contestant_message",
    "host_response",
    "contestant_message_time",
    "host_response_time",
    "interaction_score",
    "topic",
)


# A claim older than this belongs to a crashed caller and may be taken over.
GAME_END_CLAIM_TTL_SECONDS = 600


class LedgerStore(Protocol):
    async def upsert_account(self, account_id: str, name: str, username: str, email: str) -> None:
        """Insert or refresh a lightweight account row."""

    async def upsert_agent_profile(self, profile: AgentProfile) -> None:
        """Insert or update an agent's account with its registration metadata."""

    async def insert_entry(self, agent_id: str, contestant_message: str, room_id: str, topic: str | None = None) -> int:
        """Insert an open conversation entry and return its id."""

    async def insert_topic_entry(self, agent_id: str, topic: str, room_id: str) -> int:
        """Insert a closed, zero-scored entry framing a round."""

    async def close_latest_open_entry(
        self, agent_id: str, reply_text: str, score: int, topic: str | None = None
    ) -> int | None:
        """Close the most recent open entry in one step; return its id or None."""

    async def add_score(self, agent_id: str, delta: int) -> int:
        """Add ``delta`` to the agent's running total and return the new total."""

    async def read_score(self, agent_id: str) -> int | None:
        """Return the agent's running total, None when it was never scored."""

    async def read_latest_open_entry(self, agent_id: str) -> ConversationEntry | None:
        """Return the most recent open entry for the agent."""

    async def read_entries(self, agent_id: str) -> list[ConversationEntry]:
        """Return every entry of the agent in contestant-message order."""

    async def read_transcript_rows(
        self, start: datetime, end: datetime, name: str | None = None
    ) -> list[dict[str, Any]]:
        """Return entries inside the window joined with their identity's score and account."""

    async def read_top_scorer(self, agent_ids: list[str]) -> tuple[str, int] | None:
        """Return the highest-scoring agent among ``agent_ids``."""

    async def read_standings(self) -> list[tuple[str, int]]:
        """Return every scored identity, highest score first."""

    async def upsert_game_config(self, config: GameConfig) -> None:
        """Store the singleton game config."""

    async def read_game_config(self) -> GameConfig | None:
        """Return the singleton game config."""

    async def upsert_derived_identity(self, identity: DerivedIdentity) -> None:
        """Persist the identity minted at game end."""

    async def read_game_end_progress(self) -> GameEndProgress | None:
        """Return the game-end step cursor."""

    async def save_game_end_progress(self, progress: GameEndProgress) -> None:
        """Store the game-end step cursor."""

    async def claim_game_end(self) -> bool:
        """Take the single game-end slot; False while another caller holds it."""

    async def release_game_end_claim(self) -> None:
        """Give the game-end slot back."""

    async def read_session(self, external_user_id: str) -> Session | None:
        """Return a persisted session for an external user."""

    async def save_session(self, session: Session) -> None:
        """Persist a session for an external user."""

    async def truncate_all(self) -> None:
        """Wipe conversation, score, session and derivation state."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InMemoryLedgerStore:
    def __post_init__(self) -> None:
        self._accounts: dict[str, dict[str, Any]] = {}
        self._entries: list[ConversationEntry] = []
        self._scores: dict[str, int] = {}
        self._sessions: dict[str, Session] = {}
        self._game_config: GameConfig | None = None
        self._progress: GameEndProgress | None = None
        self._game_end_claimed = False
        self._next_entry_id = 1

    async def upsert_account(self, account_id: str, name: str, username: str, email: str) -> None:
        account = self._accounts.setdefault(account_id, {"id": account_id})
        account.update({"name": name, "username": username, "email": email, "createdAt": _utc_now()})

    async def upsert_agent_profile(self, profile: AgentProfile) -> None:
        account = self._accounts.setdefault(profile.agent_id, {"id": profile.agent_id})
        account.update(
            {
                "name": profile.name,
                "username": account.get("username") or profile.name,
                "avatarUrl": profile.avatar_url,
                "ipId": profile.ip_id,
                "walletAddress": profile.wallet_address,
                "licenseTermId": profile.license_term_id,
                "ipRegistrationTxnHash": profile.ip_registration_tx,
            }
        )

    async def insert_entry(self, agent_id: str, contestant_message: str, room_id: str, topic: str | None = None) -> int:
        entry = ConversationEntry(
            entry_id=self._allocate_entry_id(),
            agent_id=agent_id,
            contestant_message=contestant_message,
            contestant_message_time=_utc_now(),
            room_id=room_id,
            topic=topic,
        )
        self._entries.append(entry)
        return entry.entry_id

    async def insert_topic_entry(self, agent_id: str, topic: str, room_id: str) -> int:
        now = _utc_now()
        entry = ConversationEntry(
            entry_id=self._allocate_entry_id(),
            agent_id=agent_id,
            contestant_message=topic,
            contestant_message_time=now,
            room_id=room_id,
            host_response=topic,
            host_response_time=now,
            interaction_score=0,
            topic=topic,
        )
        self._entries.append(entry)
        return entry.entry_id

    async def close_latest_open_entry(
        self, agent_id: str, reply_text: str, score: int, topic: str | None = None
    ) -> int | None:
        latest = self._latest_open_index(agent_id)
        if latest is None:
            return None
        entry = self._entries[latest]
        self._entries[latest] = replace(
            entry,
            host_response=reply_text,
            host_response_time=_utc_now(),
            interaction_score=score,
            topic=entry.topic if entry.topic is not None else topic,
        )
        return entry.entry_id

    async def add_score(self, agent_id: str, delta: int) -> int:
        self._scores[agent_id] = self._scores.get(agent_id, 0) + delta
        return self._scores[agent_id]

    async def read_score(self, agent_id: str) -> int | None:
        return self._scores.get(agent_id)

    async def read_latest_open_entry(self, agent_id: str) -> ConversationEntry | None:
        latest = self._latest_open_index(agent_id)
        return None if latest is None else self._entries[latest]

    async def read_entries(self, agent_id: str) -> list[ConversationEntry]:
        entries = [entry for entry in self._entries if entry.agent_id == agent_id]
        return sorted(entries, key=lambda entry: (entry.contestant_message_time, entry.entry_id))

    async def read_transcript_rows(
        self, start: datetime, end: datetime, name: str | None = None
    ) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for agent_id in sorted({entry.agent_id for entry in self._entries}):
            account = self._accounts.get(agent_id, {})
            if name is not None and account.get("name") != name:
                continue
            for entry in await self.read_entries(agent_id):
                if not start <= entry.contestant_message_time <= end:
                    continue
                rows.append(
                    {
                        "agent_id": agent_id,
                        "cumulative_score": self._scores.get(agent_id, 0),
                        "name": account.get("name"),
                        "username": account.get("username"),
                        "avatar_url": account.get("avatarUrl"),
                        "details": account.get("details"),
                        "contestant_message": entry.contestant_message,
                        "host_response": entry.host_response,
                        "contestant_message_time": entry.contestant_message_time,
                        "host_response_time": entry.host_response_time,
                        "interaction_score": entry.interaction_score,
                        "topic": entry.topic,
                    }
                )
        return rows

    async def read_top_scorer(self, agent_ids: list[str]) -> tuple[str, int] | None:
        candidates = [(agent_id, self._scores[agent_id]) for agent_id in agent_ids if agent_id in self._scores]
        if not candidates:
            return None
        return sorted(candidates, key=lambda item: (-item[1], item[0]))[0]

    async def read_standings(self) -> list[tuple[str, int]]:
        return sorted(self._scores.items(), key=lambda item: (-item[1], item[0]))

    async def upsert_game_config(self, config: GameConfig) -> None:
        self._game_config = config

    async def read_game_config(self) -> GameConfig | None:
        return self._game_config

    async def upsert_derived_identity(self, identity: DerivedIdentity) -> None:
        account = self._accounts.setdefault(identity.identity_id, {"id": identity.identity_id})
        account.update(
            {
                "name": identity.name,
                "username": identity.name,
                "ipId": identity.identity_id,
                "ipRegistrationTxnHash": identity.tx_ref,
                "walletAddress": identity.wallet_address,
                "walletPrivateKey": identity.wallet_private_key,
                "character": identity.persona,
                "parentIds": list(identity.parent_ids),
                "licenseIds": list(identity.license_ids),
                "derivativeConfirmation": identity.derivative_confirmation,
            }
        )

    async def read_game_end_progress(self) -> GameEndProgress | None:
        return self._progress

    async def save_game_end_progress(self, progress: GameEndProgress) -> None:
        self._progress = progress

    async def claim_game_end(self) -> bool:
        if self._game_end_claimed:
            return False
        self._game_end_claimed = True
        return True

    async def release_game_end_claim(self) -> None:
        self._game_end_claimed = False

    async def read_session(self, external_user_id: str) -> Session | None:
        return self._sessions.get(external_user_id)

    async def save_session(self, session: Session) -> None:
        self._sessions[session.external_user_id] = session

    async def truncate_all(self) -> None:
        self._entries.clear()
        self._scores.clear()
        self._sessions.clear()
        self._progress = None
        self._game_end_claimed = False
        self._next_entry_id = 1
        derived = [account_id for account_id, account in self._accounts.items() if account.get("parentIds")]
        for account_id in derived:
            del self._accounts[account_id]

    def account(self, account_id: str) -> dict[str, Any] | None:
        return self._accounts.get(account_id)

    def _allocate_entry_id(self) -> int:
        entry_id = self._next_entry_id
        self._next_entry_id += 1
        return entry_id

    def _latest_open_index(self, agent_id: str) -> int | None:
        latest: int | None = None
        for index, entry in enumerate(self._entries):
            if entry.agent_id != agent_id or not entry.is_open:
                continue
            if latest is None or (entry.contestant_message_time, entry.entry_id) >= (
                self._entries[latest].contestant_message_time,
                self._entries[latest].entry_id,
            ):
                latest = index
        return latest


def _json_value(raw: Any) -> Any:
    if raw is None or isinstance(raw, (dict, list)):
        return raw
    return json.loads(raw)


def _entry_from_row(row: dict[str, Any]) -> ConversationEntry:
    return ConversationEntry(
        entry_id=row["id"],
        agent_id=row["agent_id"],
        contestant_message=row["contestant_message"],
        contestant_message_time=row["contestant_message_time"],
        room_id=row["room_id"],
        host_response=row["host_response"],
        host_response_time=row["host_response_time"],
        interaction_score=row["interaction_score"],
        topic=row["topic"],
    )


@dataclass
class PostgresLedgerStore:
    database_url: str

    async def _connect(self) -> Any:
        import psycopg
        from psycopg.rows import dict_row

        return await psycopg.AsyncConnection.connect(self.database_url, row_factory=dict_row)

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[Any]:
        import psycopg

        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    yield cur
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError(f"ledger store operation failed: {exc}") from exc

    async def upsert_account(self, account_id: str, name: str, username: str, email: str) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO accounts (id, name, username, email, created_at)
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (id) DO UPDATE
                SET created_at = NOW()
                """,
                (account_id, name, username, email),
            )

    async def upsert_agent_profile(self, profile: AgentProfile) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO accounts (
                    id, name, username, created_at, avatar_url, ip_id,
                    wallet_address, license_term_id, ip_registration_tx
                )
                VALUES (%s, %s, %s, NOW(), %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET name = EXCLUDED.name,
                    avatar_url = EXCLUDED.avatar_url,
                    ip_id = EXCLUDED.ip_id,
                    wallet_address = EXCLUDED.wallet_address,
                    license_term_id = EXCLUDED.license_term_id,
                    ip_registration_tx = EXCLUDED.ip_registration_tx
                """,
                (
                    profile.agent_id,
                    profile.name,
                    profile.name,
                    profile.avatar_url,
                    profile.ip_id,
                    profile.wallet_address,
                    profile.license_term_id,
                    profile.ip_registration_tx,
                ),
            )

    async def insert_entry(self, agent_id: str, contestant_message: str, room_id: str, topic: str | None = None) -> int:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO conversation_logs (agent_id, contestant_message, contestant_message_time, room_id, topic)
                VALUES (%s, %s, CURRENT_TIMESTAMP, %s, %s)
                RETURNING id
                """,
                (agent_id, contestant_message, room_id, topic),
            )
            row = await cur.fetchone()
        return int(row["id"])

    async def insert_topic_entry(self, agent_id: str, topic: str, room_id: str) -> int:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO conversation_logs (
                    agent_id, contestant_message, host_response, contestant_message_time,
                    host_response_time, interaction_score, room_id, topic
                )
                VALUES (%s, %s, %s, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP, 0, %s, %s)
                RETURNING id
                """,
                (agent_id, topic, topic, room_id, topic),
            )
            row = await cur.fetchone()
        return int(row["id"])

    async def close_latest_open_entry(
        self, agent_id: str, reply_text: str, score: int, topic: str | None = None
    ) -> int | None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                UPDATE conversation_logs
                SET host_response = %s,
                    host_response_time = CURRENT_TIMESTAMP,
                    interaction_score = %s,
                    topic = COALESCE(topic, %s)
                WHERE id = (
                    SELECT id
                    FROM conversation_logs
                    WHERE agent_id = %s
                      AND host_response IS NULL
                    ORDER BY contestant_message_time DESC, id DESC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id
                """,
                (reply_text, score, topic, agent_id),
            )
            row = await cur.fetchone()
        return None if row is None else int(row["id"])

    async def add_score(self, agent_id: str, delta: int) -> int:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO contestant_scores (agent_id, score)
                VALUES (%s, %s)
                ON CONFLICT (agent_id) DO UPDATE
                SET score = contestant_scores.score + EXCLUDED.score
                RETURNING score
                """,
                (agent_id, delta),
            )
            row = await cur.fetchone()
        return int(row["score"])

    async def read_score(self, agent_id: str) -> int | None:
        async with self._cursor() as cur:
            await cur.execute("SELECT score FROM contestant_scores WHERE agent_id = %s", (agent_id,))
            row = await cur.fetchone()
        return None if row is None else int(row["score"])

    async def read_latest_open_entry(self, agent_id: str) -> ConversationEntry | None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                SELECT * FROM conversation_logs
                WHERE agent_id = %s
                  AND host_response IS NULL
                ORDER BY contestant_message_time DESC, id DESC
                LIMIT 1
                """,
                (agent_id,),
            )
            row = await cur.fetchone()
        return None if row is None else _entry_from_row(row)

    async def read_entries(self, agent_id: str) -> list[ConversationEntry]:
        async with self._cursor() as cur:
            await cur.execute(
                """
                SELECT * FROM conversation_logs
                WHERE agent_id = %s
                ORDER BY contestant_message_time ASC, id ASC
                """,
                (agent_id,),
            )
            rows = await cur.fetchall()
        return [_entry_from_row(row) for row in rows]

    async def read_transcript_rows(
        self, start: datetime, end: datetime, name: str | None = None
    ) -> list[dict[str, Any]]:
        name_filter = "AND a.name = %s" if name is not None else ""
        params: tuple[Any, ...] = (start, end, name) if name is not None else (start, end)
        async with self._cursor() as cur:
            await cur.execute(
                f"""
                SELECT
                    cl.agent_id,
                    COALESCE(cs.score, 0) AS cumulative_score,
                    a.name,
                    a.username,
                    a.avatar_url,
                    a.details,
                    cl.contestant_message,
                    cl.host_response,
                    cl.contestant_message_time,
                    cl.host_response_time,
                    cl.interaction_score,
                    cl.topic
                FROM conversation_logs cl
                LEFT JOIN contestant_scores cs ON cs.agent_id = cl.agent_id
                LEFT JOIN accounts a ON cl.agent_id = a.id
                WHERE cl.contestant_message_time >= %s
                  AND cl.contestant_message_time <= %s
                  {name_filter}
                ORDER BY cl.agent_id, cl.contestant_message_time ASC, cl.id ASC
                """,
                params,
            )
            rows = await cur.fetchall()
        return [{column: row.get(column) for column in TRANSCRIPT_COLUMNS} for row in rows]

    async def read_top_scorer(self, agent_ids: list[str]) -> tuple[str, int] | None:
        if not agent_ids:
            return None
        async with self._cursor() as cur:
            await cur.execute(
                """
                SELECT agent_id, score
                FROM contestant_scores
                WHERE agent_id = ANY(%s)
                ORDER BY score DESC, agent_id ASC
                LIMIT 1
                """,
                (list(agent_ids),),
            )
            row = await cur.fetchone()
        return None if row is None else (row["agent_id"], int(row["score"]))

    async def read_standings(self) -> list[tuple[str, int]]:
        async with self._cursor() as cur:
            await cur.execute("SELECT agent_id, score FROM contestant_scores ORDER BY score DESC, agent_id ASC", ())
            rows = await cur.fetchall()
        return [(row["agent_id"], int(row["score"])) for row in rows]

    async def upsert_game_config(self, config: GameConfig) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO game_config (id, interval_seconds, start_time, end_time, updated_at)
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (id) DO UPDATE
                SET interval_seconds = EXCLUDED.interval_seconds,
                    start_time = EXCLUDED.start_time,
                    end_time = EXCLUDED.end_time,
                    updated_at = NOW()
                """,
                (config.config_id, config.interval_seconds, config.start_time, config.end_time),
            )

    async def read_game_config(self) -> GameConfig | None:
        async with self._cursor() as cur:
            await cur.execute("SELECT * FROM game_config ORDER BY id LIMIT 1", ())
            row = await cur.fetchone()
        if row is None:
            return None
        return GameConfig(
            interval_seconds=float(row["interval_seconds"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            config_id=int(row["id"]),
        )

    async def upsert_derived_identity(self, identity: DerivedIdentity) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO accounts (
                    id, name, username, created_at, ip_id, ip_registration_tx, wallet_address,
                    wallet_private_key, character, parent_ids, license_ids, derivative_confirmation
                )
                VALUES (%s, %s, %s, NOW(), %s, %s, %s, %s, %s::jsonb, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE
                SET ip_registration_tx = EXCLUDED.ip_registration_tx,
                    wallet_address = EXCLUDED.wallet_address,
                    wallet_private_key = EXCLUDED.wallet_private_key,
                    character = EXCLUDED.character,
                    parent_ids = EXCLUDED.parent_ids,
                    license_ids = EXCLUDED.license_ids,
                    derivative_confirmation = EXCLUDED.derivative_confirmation
                """,
                (
                    identity.identity_id,
                    identity.name,
                    identity.name,
                    identity.identity_id,
                    identity.tx_ref,
                    identity.wallet_address,
                    identity.wallet_private_key,
                    json.dumps(identity.persona),
                    list(identity.parent_ids),
                    list(identity.license_ids),
                    identity.derivative_confirmation,
                ),
            )

    async def read_game_end_progress(self) -> GameEndProgress | None:
        async with self._cursor() as cur:
            await cur.execute("SELECT * FROM game_end_progress WHERE id = 1", ())
            row = await cur.fetchone()
        if row is None:
            return None
        return GameEndProgress(
            winner_id=row["winner_id"],
            winner_score=int(row["winner_score"]),
            persona=_json_value(row["persona"]),
            identity_id=row["identity_id"],
            tx_ref=row["tx_ref"],
            host_license_id=row["host_license_id"],
            winner_license_id=row["winner_license_id"],
            derivative_confirmation=row["derivative_confirmation"],
            completed=bool(row["completed"]),
        )

    async def save_game_end_progress(self, progress: GameEndProgress) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO game_end_progress (
                    id, winner_id, winner_score, persona, identity_id, tx_ref, host_license_id,
                    winner_license_id, derivative_confirmation, completed, updated_at
                )
                VALUES (1, %s, %s, %s::jsonb, %s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (id) DO UPDATE
                SET host_license_id = EXCLUDED.host_license_id,
                    winner_license_id = EXCLUDED.winner_license_id,
                    derivative_confirmation = EXCLUDED.derivative_confirmation,
                    completed = EXCLUDED.completed,
                    updated_at = NOW()
                """,
                (
                    progress.winner_id,
                    progress.winner_score,
                    json.dumps(progress.persona),
                    progress.identity_id,
                    progress.tx_ref,
                    progress.host_license_id,
                    progress.winner_license_id,
                    progress.derivative_confirmation,
                    progress.completed,
                ),
            )

    async def claim_game_end(self) -> bool:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO game_end_claims (id, claimed_at)
                VALUES (1, NOW())
                ON CONFLICT (id) DO UPDATE
                SET claimed_at = NOW()
                WHERE game_end_claims.claimed_at < NOW() - (%s * INTERVAL '1 second')
                RETURNING id
                """,
                (GAME_END_CLAIM_TTL_SECONDS,),
            )
            row = await cur.fetchone()
        return row is not None

    async def release_game_end_claim(self) -> None:
        async with self._cursor() as cur:
            await cur.execute("DELETE FROM game_end_claims WHERE id = 1", ())

    async def read_session(self, external_user_id: str) -> Session | None:
        async with self._cursor() as cur:
            await cur.execute("SELECT * FROM sessions WHERE external_user_id = %s", (external_user_id,))
            row = await cur.fetchone()
        if row is None:
            return None
        return Session(
            external_user_id=row["external_user_id"],
            identity_id=row["identity_id"],
            room_id=row["room_id"],
            last_interaction=row["last_interaction"],
        )

    async def save_session(self, session: Session) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                """
                INSERT INTO sessions (external_user_id, identity_id, room_id, last_interaction)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (external_user_id) DO UPDATE
                SET last_interaction = EXCLUDED.last_interaction
                """,
                (session.external_user_id, session.identity_id, session.room_id, session.last_interaction),
            )

    async def truncate_all(self) -> None:
        async with self._cursor() as cur:
            await cur.execute(
                "TRUNCATE conversation_logs, contestant_scores, game_end_progress, game_end_claims, sessions "
                "RESTART IDENTITY",
                (),
            )
            await cur.execute("DELETE FROM accounts WHERE parent_ids IS NOT NULL", ())


def create_store(database_url: str | None) -> LedgerStore:
    if database_url:
        return PostgresLedgerStore(database_url=database_url)
    return InMemoryLedgerStore()
