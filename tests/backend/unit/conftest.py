from datetime import datetime, timedelta, timezone

import pytest

from vaultwars.backend.config import VaultWarsSettings
from vaultwars.backend.escrow import InMemoryEscrow
from vaultwars.backend.sealed import InMemoryConfidentialCompute
from vaultwars.backend.service import VaultWarsService
from vaultwars.backend.store import InMemoryRoomRepository

WAGER = 10**16
CREATOR = "player-creator"
OPPONENT = "player-opponent"
OUTSIDER = "player-outsider"


class FakeCursor:
    def __init__(self, rows: list[tuple] | None = None) -> None:
        self.commands: list[tuple[str, tuple]] = []
        self.rows = rows or []

    def execute(self, sql: str, params: tuple) -> None:
        self.commands.append((sql, params))

    def fetchone(self) -> tuple | None:
        return self.rows[0] if self.rows else None

    def fetchall(self) -> list[tuple]:
        return list(self.rows)

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class FakeConnection:
    def __init__(self, rows: list[tuple] | None = None) -> None:
        self.cursor_instance = FakeCursor(rows)
        self.committed = False
        self.rolled_back = False

    def cursor(self) -> FakeCursor:
        return self.cursor_instance

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True

    def __enter__(self) -> "FakeConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def settings() -> VaultWarsSettings:
    return VaultWarsSettings(
        server_salt="test-salt",
        database_url=None,
        host="127.0.0.1",
        port=8000,
        min_wager=10**15,
        join_timeout_sec=600,
        move_timeout_sec=300,
        log_level="DEBUG",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def service(settings: VaultWarsSettings, clock: FakeClock) -> VaultWarsService:
    return VaultWarsService(
        settings=settings,
        repository=InMemoryRoomRepository(),
        compute=InMemoryConfidentialCompute(server_salt=settings.server_salt),
        escrow=InMemoryEscrow(),
        clock=clock,
    )


@pytest.fixture()
def encrypt(service: VaultWarsService):
    def _encrypt(values: list[int], sender: str):
        return service.compute.encrypt_input(values, sender)

    return _encrypt


@pytest.fixture()
def open_room(service: VaultWarsService, encrypt) -> int:
    """Room created by CREATOR with vault [1, 2, 3, 4], still waiting for an opponent."""
    return service.create_room(CREATOR, encrypt([1, 2, 3, 4], CREATOR), WAGER)


@pytest.fixture()
def started_room(service: VaultWarsService, encrypt, open_room: int) -> int:
    """``open_room`` joined by OPPONENT with vault [4, 3, 2, 1]."""
    service.join_room(OPPONENT, open_room, encrypt([4, 3, 2, 1], OPPONENT), WAGER)
    return open_room
