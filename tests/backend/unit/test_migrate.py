import pytest

from matchmaker.backend import migrate


class _SyncCursor:
    def __init__(self) -> None:
        self.executed: list[str] = []

    def execute(self, sql: str) -> None:
        self.executed.append(sql)

    def __enter__(self) -> "_SyncCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class _SyncConnection:
    def __init__(self) -> None:
        self.cursor_instance = _SyncCursor()
        self.committed = False

    def cursor(self) -> _SyncCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True


def test_schema_declares_every_ledger_table() -> None:
    tables = migrate.schema_tables(migrate.load_schema())

    assert set(tables) == {
        "accounts",
        "conversation_logs",
        "contestant_scores",
        "game_config",
        "game_end_claims",
        "game_end_progress",
        "sessions",
    }


def test_apply_schema_executes_and_commits() -> None:
    conn = _SyncConnection()

    tables = migrate.apply_schema(conn, "CREATE TABLE IF NOT EXISTS sessions (id TEXT);")

    assert tables == ["sessions"]
    assert conn.cursor_instance.executed == ["CREATE TABLE IF NOT EXISTS sessions (id TEXT);"]
    assert conn.committed is True


def test_main_requires_database_url(monkeypatch) -> None:
    monkeypatch.delenv("MATCHMAKER_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError, match="MATCHMAKER_DATABASE_URL"):
        migrate.main()
