"""Game-end sequencer.

Steps run strictly in order and are never retried internally:

1. select the highest-scoring contestant
2. have the winner's agent write a derived persona
3. register the derived identity
4. issue a license host -> derived, then winner -> derived
5. register the derivative with both licenses
6. persist the derived identity

Steps 3-5 are external and irreversible. Their identifiers are written to a
``GameEndProgress`` cursor as soon as each one succeeds, so a later call picks
up after the last completed step instead of registering twice. Nothing is
written before step 3 succeeds.

One caller runs the protocol at a time. Callers in the same process queue on a
lock; a caller in another process sees the store claim taken and gets
``Conflict``.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from typing import Sequence

from .errors import Conflict, NotFound
from .gateway import AgentGateway
from .models import AgentProfile, DerivedIdentity, GameEndProgress, GameEndResult
from .registry import AssetRegistry, build_identity_metadata
from .security import require_admin
from .store import LedgerStore


logger = logging.getLogger(__name__)


class GameEndSequencer:
    def __init__(
        self,
        *,
        store: LedgerStore,
        gateway: AgentGateway,
        registry: AssetRegistry,
        host: AgentProfile,
        contestants: Sequence[AgentProfile],
        admin_token: str,
        child_wallet_address: str | None = None,
        child_wallet_private_key: str | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._registry = registry
        self.host = host
        self.contestants = {profile.agent_id: profile for profile in contestants}
        self._admin_token = admin_token
        self.child_wallet_address = child_wallet_address
        self.child_wallet_private_key = child_wallet_private_key
        self._lock = asyncio.Lock()

    async def select_winner(self) -> tuple[AgentProfile, int]:
        top = await self._store.read_top_scorer(list(self.contestants))
        if top is None:
            raise NotFound("No contestants found")
        winner_id, score = top
        return self.contestants[winner_id], score

    async def end_game(self, credential: str) -> GameEndResult:
        require_admin(credential, self._admin_token)

        async with self._lock:
            progress = await self._store.read_game_end_progress()
            if progress is not None and progress.completed:
                logger.info("game already ended; derived identity %s", progress.identity_id)
                return self._result(progress)

            if not await self._store.claim_game_end():
                raise Conflict("Game end is already in progress")
            try:
                return await self._run(progress)
            finally:
                await self._store.release_game_end_claim()

    async def _run(self, progress: GameEndProgress | None) -> GameEndResult:
        if progress is None:
            progress = await self._register_derived_identity()
        else:
            logger.warning("resuming game end for derived identity %s", progress.identity_id)

        winner = self.contestants.get(progress.winner_id)
        if winner is None:
            raise NotFound(f"Winner {progress.winner_id} is not a configured contestant")
        child_credential = self._require_child_credential()

        if progress.host_license_id is None:
            license_id = await self._registry.issue_license(
                self._credential(self.host), self._identity(self.host), progress.identity_id
            )
            progress = replace(progress, host_license_id=license_id)
            await self._store.save_game_end_progress(progress)

        if progress.winner_license_id is None:
            license_id = await self._registry.issue_license(
                self._credential(winner), self._identity(winner), progress.identity_id
            )
            progress = replace(progress, winner_license_id=license_id)
            await self._store.save_game_end_progress(progress)

        if progress.derivative_confirmation is None:
            confirmation = await self._registry.register_derivative(
                child_credential,
                progress.identity_id,
                [progress.host_license_id, progress.winner_license_id],
            )
            progress = replace(progress, derivative_confirmation=confirmation)
            await self._store.save_game_end_progress(progress)
            logger.info("derivative %s registered: %s", progress.identity_id, confirmation)

        await self._store.upsert_derived_identity(
            DerivedIdentity(
                identity_id=progress.identity_id,
                name=str(progress.persona.get("name", progress.identity_id)),
                parent_ids=(self.host.agent_id, winner.agent_id),
                tx_ref=progress.tx_ref,
                license_ids=(progress.host_license_id, progress.winner_license_id),
                derivative_confirmation=progress.derivative_confirmation,
                persona=progress.persona,
                wallet_address=self.child_wallet_address,
                wallet_private_key=self.child_wallet_private_key,
            )
        )
        progress = replace(progress, completed=True)
        await self._store.save_game_end_progress(progress)
        return self._result(progress)

    async def _register_derived_identity(self) -> GameEndProgress:
        winner, score = await self.select_winner()
        logger.info("winner: %s with score %s", winner.name, score)
        for profile in (self.host, winner):
            self._credential(profile)
            self._identity(profile)
        self._require_child_credential()

        persona = await self._gateway.generate_child(winner.agent_id, [self.host.agent_id, winner.agent_id])
        registered = await self._registry.register_identity(build_identity_metadata(persona))

        progress = GameEndProgress(
            winner_id=winner.agent_id,
            winner_score=score,
            persona=persona,
            identity_id=registered.identity_id,
            tx_ref=registered.tx_ref,
        )
        await self._store.save_game_end_progress(progress)
        return progress

    def _credential(self, profile: AgentProfile) -> str:
        if not profile.wallet_private_key:
            raise NotFound(f"No wallet credential configured for {profile.name}")
        return profile.wallet_private_key

    def _identity(self, profile: AgentProfile) -> str:
        if not profile.ip_id:
            raise NotFound(f"No registered identity for {profile.name}")
        return profile.ip_id

    def _require_child_credential(self) -> str:
        if not self.child_wallet_private_key:
            raise NotFound("No wallet credential configured for the derived identity")
        return self.child_wallet_private_key

    def _result(self, progress: GameEndProgress) -> GameEndResult:
        winner = self.contestants.get(progress.winner_id)
        return GameEndResult(
            winner_id=progress.winner_id,
            winner_name=winner.name if winner is not None else progress.winner_id,
            winner_score=progress.winner_score,
            derived_persona=progress.persona,
            derived_identity_id=progress.identity_id,
            license_ids=tuple(
                license_id
                for license_id in (progress.host_license_id, progress.winner_license_id)
                if license_id is not None
            ),
        )
