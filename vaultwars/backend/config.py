"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class VaultWarsSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    min_wager: int
    join_timeout_sec: int
    move_timeout_sec: int
    log_level: str


def load_settings() -> VaultWarsSettings:
    port_raw = os.getenv("VAULTWARS_PORT", "8000")
    return VaultWarsSettings(
        server_salt=os.getenv("VAULTWARS_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("VAULTWARS_DATABASE_URL"),
        host=os.getenv("VAULTWARS_HOST", "127.0.0.1"),
        port=int(port_raw),
        min_wager=int(os.getenv("VAULTWARS_MIN_WAGER", "1000000000000000")),
        join_timeout_sec=int(os.getenv("VAULTWARS_JOIN_TIMEOUT_SEC", "86400")),
        move_timeout_sec=int(os.getenv("VAULTWARS_MOVE_TIMEOUT_SEC", "3600")),
        log_level=os.getenv("VAULTWARS_LOG_LEVEL", "INFO").upper(),
    )
