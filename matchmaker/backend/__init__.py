"""Backend package for the matchmaker round table."""

from .config import BackendSettings, load_settings
from .errors import GatewayError, MatchmakerError, NotFound, PersistenceError, Unauthorized, ValidationError
from .ledger import ConversationLedger
from .scheduler import RoundTableScheduler
from .sequencer import GameEndSequencer
from .sessions import SessionBridge
from .store import InMemoryLedgerStore, LedgerStore, PostgresLedgerStore, create_store

__all__ = [
    "BackendSettings",
    "ConversationLedger",
    "create_store",
    "GameEndSequencer",
    "GatewayError",
    "InMemoryLedgerStore",
    "LedgerStore",
    "load_settings",
    "MatchmakerError",
    "NotFound",
    "PersistenceError",
    "PostgresLedgerStore",
    "RoundTableScheduler",
    "SessionBridge",
    "Unauthorized",
    "ValidationError",
]
