"""Domain records for rooms, probes and disclosure requests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum
from typing import Callable

from vaultwars.backend.sealed import SealedHandle

CODE_LENGTH = 4
NULL_IDENTITY = ""

Vault = tuple[SealedHandle, ...]
Clock = Callable[[], datetime]


class Phase(IntEnum):
    WAITING_FOR_JOIN = 0
    LOCKED = 1
    IN_PROGRESS = 2
    FINISHED = 3
    CANCELLED = 4


@dataclass(frozen=True)
class Room:
    room_id: int
    creator: str
    wager: int
    phase: Phase
    creator_vault: Vault
    created_at: datetime
    last_activity_at: datetime
    opponent: str | None = None
    opponent_vault: Vault = ()
    turn_count: int = 0
    pending_winner: SealedHandle | None = None
    winner: str | None = None

    @property
    def participants(self) -> tuple[str, ...]:
        if self.opponent is None:
            return (self.creator,)
        return (self.creator, self.opponent)


@dataclass(frozen=True)
class ProbeScore:
    breaches: SealedHandle
    signals: SealedHandle
    is_win: SealedHandle


@dataclass(frozen=True)
class Probe:
    room_id: int
    turn_index: int
    submitter: str
    guess: Vault
    breaches: SealedHandle
    signals: SealedHandle
    is_win: SealedHandle
    submitted_at: datetime
    result_computed: bool = True


@dataclass(frozen=True)
class DisclosureRequest:
    request_id: str
    room_id: int
    handle: SealedHandle
    turn_index: int
    requested_at: datetime


@dataclass(frozen=True)
class RegisteredPlayer:
    player_id: str
    token: str


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
