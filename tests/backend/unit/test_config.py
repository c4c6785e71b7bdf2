from matchmaker.backend.config import load_settings


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("MATCHMAKER_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("MATCHMAKER_HOST", "localhost")
    monkeypatch.setenv("MATCHMAKER_PORT", "9000")
    monkeypatch.setenv("MATCHMAKER_ADMIN_TOKEN", "secret")
    monkeypatch.setenv("MATCHMAKER_ROUND_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("MATCHMAKER_ROUND_TABLE_ENABLED", "false")

    settings = load_settings()

    assert settings.database_url == "postgresql://local"
    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.admin_token == "secret"
    assert settings.round_interval_seconds == 30.0
    assert settings.round_table_enabled is False


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in (
        "MATCHMAKER_DATABASE_URL",
        "MATCHMAKER_HOST",
        "MATCHMAKER_PORT",
        "MATCHMAKER_ADMIN_TOKEN",
        "MATCHMAKER_ROUND_INTERVAL_SECONDS",
        "MATCHMAKER_COOLDOWN_SECONDS",
        "MATCHMAKER_ROUND_TABLE_ENABLED",
        "MATCHMAKER_HOST_AGENT_ID",
        "MATCHMAKER_CONTESTANT1_ID",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.database_url is None
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.admin_token == ""
    assert settings.round_interval_seconds == 5.0
    assert settings.cooldown_seconds == 25.0
    assert settings.round_table_enabled is True
    assert settings.host_agent is None
    assert settings.contestants == ()


def test_load_settings_reads_agent_roster_until_gap(monkeypatch) -> None:
    monkeypatch.setenv("MATCHMAKER_HOST_AGENT_ID", "host-1")
    monkeypatch.setenv("MATCHMAKER_HOST_AGENT_NAME", "Marlo")
    monkeypatch.setenv("MATCHMAKER_HOST_AGENT_WALLET_PRIVATE_KEY", "key-host")
    monkeypatch.setenv("MATCHMAKER_CONTESTANT1_ID", "agent-a")
    monkeypatch.setenv("MATCHMAKER_CONTESTANT1_IP_ID", "ip-a")
    monkeypatch.setenv("MATCHMAKER_CONTESTANT2_ID", "agent-b")
    monkeypatch.delenv("MATCHMAKER_CONTESTANT3_ID", raising=False)
    monkeypatch.setenv("MATCHMAKER_CONTESTANT4_ID", "agent-d")

    settings = load_settings()

    assert settings.host_agent is not None
    assert settings.host_agent.name == "Marlo"
    assert settings.host_agent.wallet_private_key == "key-host"
    assert [profile.agent_id for profile in settings.contestants] == ["agent-a", "agent-b"]
    assert settings.contestants[0].ip_id == "ip-a"
    assert settings.contestants[1].name == "agent-b"


def test_load_settings_splits_allowed_origins(monkeypatch) -> None:
    monkeypatch.setenv("MATCHMAKER_ALLOWED_ORIGINS", " https://show.example ,,http://localhost:5173 ")

    settings = load_settings()

    assert settings.allowed_origins == ("https://show.example", "http://localhost:5173")


def test_load_settings_allows_no_origins_by_default(monkeypatch) -> None:
    monkeypatch.delenv("MATCHMAKER_ALLOWED_ORIGINS", raising=False)

    assert load_settings().allowed_origins == ()
