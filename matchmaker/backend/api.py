"""FastAPI endpoints for external chat, transcripts and game administration."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .admin import GameAdmin
from .config import BackendSettings, load_settings
from .errors import MatchmakerError, NotFound
from .gateway import AgentGateway, HttpAgentGateway
from .ledger import ConversationLedger
from .registry import AssetRegistry, HttpAssetRegistry
from .scheduler import RoundTableScheduler, Sleep
from .security import extract_bearer_token
from .sequencer import GameEndSequencer
from .sessions import SessionBridge
from .state import build_status_snapshot
from .store import LedgerStore, create_store


logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Failed to process request"


class ChatRequest(BaseModel):
    message: str | None = None
    userId: str | None = None
    userName: str | None = None


class GameConfigRequest(BaseModel):
    interval: float | None = None
    startTime: datetime | None = None
    endTime: datetime | None = None


def _success(data: Any) -> dict[str, Any]:
    return {"status": "success", "data": data}


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def create_app(
    settings: BackendSettings | None = None,
    store: LedgerStore | None = None,
    gateway: AgentGateway | None = None,
    registry: AssetRegistry | None = None,
    sleep: Sleep = asyncio.sleep,
) -> FastAPI:
    settings = settings if settings is not None else load_settings()
    ledger_store = store if store is not None else create_store(settings.database_url)
    agent_gateway = gateway if gateway is not None else HttpAgentGateway(
        settings.agent_gateway_url, timeout=settings.gateway_timeout_seconds
    )
    asset_registry = registry if registry is not None else HttpAssetRegistry(
        settings.registry_url, timeout=settings.gateway_timeout_seconds
    )

    host = settings.host_agent
    ledger = ConversationLedger(ledger_store, host_name=host.name if host is not None else "host")
    sessions = SessionBridge(ledger_store)
    admin = GameAdmin(ledger_store, settings.admin_token, sessions)

    scheduler: RoundTableScheduler | None = None
    sequencer: GameEndSequencer | None = None
    if host is not None:
        scheduler = RoundTableScheduler(
            gateway=agent_gateway,
            ledger=ledger,
            store=ledger_store,
            sessions=sessions,
            host=host,
            contestants=settings.contestants,
            room_id=settings.room_id,
            default_interval=settings.round_interval_seconds,
            turn_delay=settings.turn_delay_seconds,
            contestant_gap=settings.contestant_gap_seconds,
            cooldown=settings.cooldown_seconds,
            cooldown_max=settings.cooldown_max_seconds,
            sleep=sleep,
        )
        sequencer = GameEndSequencer(
            store=ledger_store,
            gateway=agent_gateway,
            registry=asset_registry,
            host=host,
            contestants=settings.contestants,
            admin_token=settings.admin_token,
            child_wallet_address=settings.child_wallet_address,
            child_wallet_private_key=settings.child_wallet_private_key,
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        task: asyncio.Task[None] | None = None
        if settings.round_table_enabled and scheduler is not None:
            task = asyncio.create_task(scheduler.run_forever(), name="round-table")
            logger.info("round table started")
        elif settings.round_table_enabled:
            logger.warning("round table disabled: no host agent configured")
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                logger.info("round table stopped")

    app = FastAPI(title="Matchmaker API", version="0.1.0", lifespan=lifespan)
    app.state.scheduler = scheduler
    app.state.ledger = ledger
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(MatchmakerError)
    async def handle_matchmaker_error(request: Request, exc: MatchmakerError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
            return _error_response(exc.status_code, GENERIC_FAILURE)
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("%s %s failed", request.method, request.url.path, exc_info=exc)
        return _error_response(500, GENERIC_FAILURE)

    def get_scheduler() -> RoundTableScheduler:
        if scheduler is None:
            raise NotFound("Host agent is not configured")
        return scheduler

    def get_sequencer() -> GameEndSequencer:
        if sequencer is None:
            raise NotFound("Host agent is not configured")
        return sequencer

    def get_ledger() -> ConversationLedger:
        return ledger

    def get_admin() -> GameAdmin:
        return admin

    @app.post("/api/chat")
    async def post_chat(
        payload: ChatRequest,
        local_scheduler: RoundTableScheduler = Depends(get_scheduler),
    ) -> dict[str, Any]:
        reply = await local_scheduler.handle_external_chat(
            external_user_id=payload.userId or "",
            user_name=payload.userName,
            message=payload.message or "",
        )
        return _success(
            {
                "message": reply.reply_text,
                "score": reply.score,
                "sessionInfo": {
                    "userId": reply.session.identity_id,
                    "roomId": reply.session.room_id,
                    "originalUserId": reply.session.external_user_id,
                },
            }
        )

    @app.get("/api/chat-data")
    async def get_chat_data(
        startTime: datetime | None = Query(default=None),
        agentName: str | None = Query(default=None),
        local_ledger: ConversationLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        agents = await local_ledger.transcripts(start=startTime, agent_name=agentName)
        return _success({"agents": agents})

    @app.get("/api/game/status")
    async def get_game_status() -> dict[str, Any]:
        config = await ledger_store.read_game_config()
        standings = await ledger_store.read_standings()
        return _success(
            build_status_snapshot(
                config=config,
                position=scheduler.position if scheduler is not None else None,
                last_successful_round_at=scheduler.last_successful_round_at if scheduler is not None else None,
                consecutive_failures=scheduler.consecutive_failures if scheduler is not None else 0,
                roster_size=len(settings.contestants),
                standings=standings,
            )
        )

    @app.put("/api/game/config")
    async def put_game_config(
        payload: GameConfigRequest,
        authorization: str | None = Header(default=None),
        local_admin: GameAdmin = Depends(get_admin),
    ) -> dict[str, Any]:
        config = await local_admin.set_game_config(
            extract_bearer_token(authorization), payload.interval, payload.startTime, payload.endTime
        )
        return _success(
            {
                "interval": config.interval_seconds,
                "startTime": config.start_time.isoformat(),
                "endTime": config.end_time.isoformat(),
            }
        )

    @app.post("/api/game/reset")
    async def post_game_reset(
        authorization: str | None = Header(default=None),
        local_admin: GameAdmin = Depends(get_admin),
    ) -> dict[str, Any]:
        await local_admin.reset_game(extract_bearer_token(authorization))
        return _success({"reset": True})

    @app.post("/api/game/end")
    async def post_game_end(
        authorization: str | None = Header(default=None),
        local_sequencer: GameEndSequencer = Depends(get_sequencer),
    ) -> Any:
        try:
            result = await local_sequencer.end_game(extract_bearer_token(authorization))
        except MatchmakerError as exc:
            logger.error("game end failed: %s", exc.message)
            return _error_response(exc.status_code, exc.message)
        except Exception as exc:  # noqa: BLE001
            logger.exception("game end failed")
            return _error_response(500, str(exc))
        return _success(
            {
                "winner": {"agentId": result.winner_id, "name": result.winner_name, "score": result.winner_score},
                "derivedPersona": result.derived_persona,
                "derivedIdentityId": result.derived_identity_id,
                "licenseIds": list(result.license_ids),
            }
        )

    @app.get("/api/health")
    async def get_health() -> dict[str, Any]:
        last_round = scheduler.last_successful_round_at if scheduler is not None else None
        return {
            "status": "ok",
            "lastSuccessfulRoundAt": last_round.isoformat() if last_round is not None else None,
        }

    return app
