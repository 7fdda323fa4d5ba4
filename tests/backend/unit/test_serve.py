from dataclasses import replace

import pytest

from vaultwars.backend import serve


def test_parse_args_defaults_to_run() -> None:
    args = serve.parse_args([])

    assert args.command == "run"
    assert args.host is None
    assert args.port is None


def test_parse_args_run_overrides() -> None:
    args = serve.parse_args(["run", "--host", "0.0.0.0", "--port", "9001"])

    assert args.command == "run"
    assert args.host == "0.0.0.0"
    assert args.port == 9001


def test_parse_args_migrate() -> None:
    assert serve.parse_args(["migrate"]).command == "migrate"


def test_apply_schema_requires_database_url(settings) -> None:
    with pytest.raises(RuntimeError, match="VAULTWARS_DATABASE_URL"):
        serve.apply_schema(replace(settings, database_url=None))


def test_main_migrate_applies_schema(monkeypatch) -> None:
    applied = []
    monkeypatch.setenv("VAULTWARS_DATABASE_URL", "postgresql://localhost/vaultwars")
    monkeypatch.setattr(serve, "apply_schema", lambda settings: applied.append(settings.database_url))

    assert serve.main(["migrate"]) == 0
    assert applied == ["postgresql://localhost/vaultwars"]
