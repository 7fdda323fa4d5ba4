"""Persistence interfaces and implementations for rooms, probes and stats."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import json
from typing import Any, Protocol

from vaultwars.backend.models import DisclosureRequest, Phase, Probe, Room, Vault
from vaultwars.backend.sealed import SealedHandle


class RoomRepository(Protocol):
    def create_room(self, room: Room) -> Room:
        """Persist a new room and return it with its assigned id."""

    def get_room(self, room_id: int) -> Room | None:
        """Return the room or None when the id was never assigned."""

    def save_room(self, room: Room) -> None:
        """Replace the stored room record."""

    def record_probe(self, room: Room, probe: Probe) -> None:
        """Append ``probe`` and store the advanced ``room`` in one step."""

    def finish_room(self, room: Room) -> None:
        """Store a finished room and credit its winner with a win in one step."""

    def get_probe(self, room_id: int, turn_index: int) -> Probe | None:
        """Return the probe at ``turn_index``."""

    def list_probes(self, room_id: int) -> list[Probe]:
        """Return the room's probe log in turn order."""

    def get_wins(self, identity: str) -> int:
        """Return the win count for ``identity``."""

    def count_rooms(self) -> int:
        """Return how many rooms have been created."""

    def list_rooms(self, phase: Phase) -> list[Room]:
        """Return every room currently in ``phase``, oldest first."""

    def add_disclosure_request(self, request: DisclosureRequest) -> None:
        """Remember which handle a disclosure request was issued for."""

    def get_disclosure_request(self, request_id: str) -> DisclosureRequest | None:
        """Return a previously issued disclosure request."""

    def list_disclosure_requests(self, room_id: int) -> list[DisclosureRequest]:
        """Return the room's disclosure requests in issue order."""

    def register_player(self, player_id: str, token_hash: str) -> None:
        """Store a player and the hash of its bearer token."""

    def resolve_player(self, token_hash: str) -> str | None:
        """Return the player id owning ``token_hash``."""


@dataclass
class InMemoryRoomRepository:
    def __post_init__(self) -> None:
        self._rooms: dict[int, Room] = {}
        self._probes: dict[int, list[Probe]] = {}
        self._wins: dict[str, int] = {}
        self._requests: dict[str, DisclosureRequest] = {}
        self._players: dict[str, str] = {}

    def create_room(self, room: Room) -> Room:
        created = replace(room, room_id=len(self._rooms) + 1)
        self._rooms[created.room_id] = created
        self._probes[created.room_id] = []
        return created

    def get_room(self, room_id: int) -> Room | None:
        return self._rooms.get(room_id)

    def save_room(self, room: Room) -> None:
        if room.room_id not in self._rooms:
            raise KeyError(f"Unknown room {room.room_id}")
        self._rooms[room.room_id] = room

    def record_probe(self, room: Room, probe: Probe) -> None:
        log = self._probes[room.room_id]
        if probe.turn_index != len(log):
            raise ValueError(f"Probe turn {probe.turn_index} does not extend a log of {len(log)}")
        log.append(probe)
        self._rooms[room.room_id] = room

    def finish_room(self, room: Room) -> None:
        if room.winner is None:
            raise ValueError("A finished room needs a winner")
        self._rooms[room.room_id] = room
        self._wins[room.winner] = self._wins.get(room.winner, 0) + 1

    def get_probe(self, room_id: int, turn_index: int) -> Probe | None:
        log = self._probes.get(room_id, [])
        if 0 <= turn_index < len(log):
            return log[turn_index]
        return None

    def list_probes(self, room_id: int) -> list[Probe]:
        return list(self._probes.get(room_id, []))

    def get_wins(self, identity: str) -> int:
        return self._wins.get(identity, 0)

    def count_rooms(self) -> int:
        return len(self._rooms)

    def list_rooms(self, phase: Phase) -> list[Room]:
        return [room for room in self._rooms.values() if room.phase == phase]

    def add_disclosure_request(self, request: DisclosureRequest) -> None:
        self._requests[request.request_id] = request

    def get_disclosure_request(self, request_id: str) -> DisclosureRequest | None:
        return self._requests.get(request_id)

    def list_disclosure_requests(self, room_id: int) -> list[DisclosureRequest]:
        return [request for request in self._requests.values() if request.room_id == room_id]

    def register_player(self, player_id: str, token_hash: str) -> None:
        self._players[token_hash] = player_id

    def resolve_player(self, token_hash: str) -> str | None:
        return self._players.get(token_hash)


_ROOM_COLUMNS = (
    "id, creator, opponent, wager, phase, creator_vault, opponent_vault, "
    "turn_count, pending_winner, winner, created_at, last_activity_at"
)
_PROBE_COLUMNS = "room_id, turn_index, submitter, guess, breaches, signals, is_win, result_computed, submitted_at"


@dataclass
class PostgresRoomRepository:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def create_room(self, room: Room) -> Room:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO rooms (creator, opponent, wager, phase, creator_vault, opponent_vault,
                                       turn_count, pending_winner, winner, created_at, last_activity_at)
                    VALUES (%s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    _room_params(room),
                )
                row = cur.fetchone()
            conn.commit()
        return replace(room, room_id=int(row[0]))

    def get_room(self, room_id: int) -> Room | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE id = %s", (room_id,))
                row = cur.fetchone()
        if row is None:
            return None
        return _room_from_row(row)

    def save_room(self, room: Room) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                self._update_room(cur, room)
            conn.commit()

    def record_probe(self, room: Room, probe: Probe) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO probes ({_PROBE_COLUMNS})
                    VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s, %s, %s)
                    """,
                    (
                        probe.room_id,
                        probe.turn_index,
                        probe.submitter,
                        _dump_vault(probe.guess),
                        str(probe.breaches),
                        str(probe.signals),
                        str(probe.is_win),
                        probe.result_computed,
                        probe.submitted_at,
                    ),
                )
                self._update_room(cur, room)
            conn.commit()

    def finish_room(self, room: Room) -> None:
        if room.winner is None:
            raise ValueError("A finished room needs a winner")
        with self._connect() as conn:
            with conn.cursor() as cur:
                self._update_room(cur, room)
                cur.execute(
                    """
                    INSERT INTO player_stats (player_id, wins) VALUES (%s, 1)
                    ON CONFLICT (player_id) DO UPDATE SET wins = player_stats.wins + 1
                    """,
                    (room.winner,),
                )
            conn.commit()

    def get_probe(self, room_id: int, turn_index: int) -> Probe | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_PROBE_COLUMNS} FROM probes WHERE room_id = %s AND turn_index = %s",
                    (room_id, turn_index),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return _probe_from_row(row)

    def list_probes(self, room_id: int) -> list[Probe]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_PROBE_COLUMNS} FROM probes WHERE room_id = %s ORDER BY turn_index",
                    (room_id,),
                )
                rows = cur.fetchall()
        return [_probe_from_row(row) for row in rows]

    def get_wins(self, identity: str) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT wins FROM player_stats WHERE player_id = %s", (identity,))
                row = cur.fetchone()
        return 0 if row is None else int(row[0])

    def count_rooms(self) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT COUNT(*) FROM rooms", ())
                row = cur.fetchone()
        return int(row[0])

    def list_rooms(self, phase: Phase) -> list[Room]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE phase = %s ORDER BY id", (int(phase),))
                rows = cur.fetchall()
        return [_room_from_row(row) for row in rows]

    def add_disclosure_request(self, request: DisclosureRequest) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO disclosure_requests (request_id, room_id, handle, turn_index, requested_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (request.request_id, request.room_id, str(request.handle), request.turn_index, request.requested_at),
                )
            conn.commit()

    def get_disclosure_request(self, request_id: str) -> DisclosureRequest | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT request_id, room_id, handle, turn_index, requested_at
                    FROM disclosure_requests WHERE request_id = %s
                    """,
                    (request_id,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        return _request_from_row(row)

    def list_disclosure_requests(self, room_id: int) -> list[DisclosureRequest]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT request_id, room_id, handle, turn_index, requested_at
                    FROM disclosure_requests WHERE room_id = %s ORDER BY requested_at, turn_index
                    """,
                    (room_id,),
                )
                rows = cur.fetchall()
        return [_request_from_row(row) for row in rows]

    def register_player(self, player_id: str, token_hash: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO players (id, token_hash, created_at) VALUES (%s, %s, now())",
                    (player_id, token_hash),
                )
            conn.commit()

    def resolve_player(self, token_hash: str) -> str | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM players WHERE token_hash = %s", (token_hash,))
                row = cur.fetchone()
        return None if row is None else str(row[0])

    def _update_room(self, cur: Any, room: Room) -> None:
        cur.execute(
            """
            UPDATE rooms
            SET creator = %s, opponent = %s, wager = %s, phase = %s,
                creator_vault = %s::jsonb, opponent_vault = %s::jsonb, turn_count = %s,
                pending_winner = %s, winner = %s, created_at = %s, last_activity_at = %s
            WHERE id = %s
            """,
            (*_room_params(room), room.room_id),
        )


def _dump_vault(vault: Vault) -> str:
    return json.dumps([str(handle) for handle in vault])


def _load_vault(raw: Any) -> Vault:
    items = raw if isinstance(raw, list) else json.loads(raw or "[]")
    return tuple(SealedHandle.parse(item) for item in items)


def _load_handle(raw: str | None) -> SealedHandle | None:
    return None if raw is None else SealedHandle.parse(raw)


def _room_params(room: Room) -> tuple:
    return (
        room.creator,
        room.opponent,
        room.wager,
        int(room.phase),
        _dump_vault(room.creator_vault),
        _dump_vault(room.opponent_vault),
        room.turn_count,
        None if room.pending_winner is None else str(room.pending_winner),
        room.winner,
        room.created_at,
        room.last_activity_at,
    )


def _room_from_row(row: tuple) -> Room:
    (
        room_id,
        creator,
        opponent,
        wager,
        phase,
        creator_vault,
        opponent_vault,
        turn_count,
        pending_winner,
        winner,
        created_at,
        last_activity_at,
    ) = row
    return Room(
        room_id=int(room_id),
        creator=creator,
        opponent=opponent,
        wager=int(wager),
        phase=Phase(int(phase)),
        creator_vault=_load_vault(creator_vault),
        opponent_vault=_load_vault(opponent_vault),
        turn_count=int(turn_count),
        pending_winner=_load_handle(pending_winner),
        winner=winner,
        created_at=_as_datetime(created_at),
        last_activity_at=_as_datetime(last_activity_at),
    )


def _probe_from_row(row: tuple) -> Probe:
    room_id, turn_index, submitter, guess, breaches, signals, is_win, result_computed, submitted_at = row
    return Probe(
        room_id=int(room_id),
        turn_index=int(turn_index),
        submitter=submitter,
        guess=_load_vault(guess),
        breaches=SealedHandle.parse(breaches),
        signals=SealedHandle.parse(signals),
        is_win=SealedHandle.parse(is_win),
        result_computed=bool(result_computed),
        submitted_at=_as_datetime(submitted_at),
    )


def _request_from_row(row: tuple) -> DisclosureRequest:
    request_id, room_id, handle, turn_index, requested_at = row
    return DisclosureRequest(
        request_id=request_id,
        room_id=int(room_id),
        handle=SealedHandle.parse(handle),
        turn_index=int(turn_index),
        requested_at=_as_datetime(requested_at),
    )


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def create_repository(database_url: str | None) -> RoomRepository:
    if database_url:
        return PostgresRoomRepository(database_url=database_url)
    return InMemoryRoomRepository()
