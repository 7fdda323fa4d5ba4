from vaultwars.backend.config import load_settings


def test_load_settings_reads_expected_env(monkeypatch) -> None:
    monkeypatch.setenv("VAULTWARS_SERVER_SALT", "salt-1")
    monkeypatch.setenv("VAULTWARS_DATABASE_URL", "postgresql://local")
    monkeypatch.setenv("VAULTWARS_HOST", "localhost")
    monkeypatch.setenv("VAULTWARS_PORT", "9000")
    monkeypatch.setenv("VAULTWARS_MIN_WAGER", "500")
    monkeypatch.setenv("VAULTWARS_JOIN_TIMEOUT_SEC", "60")
    monkeypatch.setenv("VAULTWARS_MOVE_TIMEOUT_SEC", "30")
    monkeypatch.setenv("VAULTWARS_LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.server_salt == "salt-1"
    assert settings.database_url == "postgresql://local"
    assert settings.host == "localhost"
    assert settings.port == 9000
    assert settings.min_wager == 500
    assert settings.join_timeout_sec == 60
    assert settings.move_timeout_sec == 30
    assert settings.log_level == "DEBUG"


def test_load_settings_applies_defaults(monkeypatch) -> None:
    for name in (
        "VAULTWARS_SERVER_SALT",
        "VAULTWARS_DATABASE_URL",
        "VAULTWARS_HOST",
        "VAULTWARS_PORT",
        "VAULTWARS_MIN_WAGER",
        "VAULTWARS_JOIN_TIMEOUT_SEC",
        "VAULTWARS_MOVE_TIMEOUT_SEC",
        "VAULTWARS_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.server_salt == "dev-salt"
    assert settings.database_url is None
    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.min_wager == 10**15
    assert settings.join_timeout_sec == 86400
    assert settings.move_timeout_sec == 3600
    assert settings.log_level == "INFO"
