"""Game service wiring the room components together behind one lock."""

from __future__ import annotations

from datetime import timedelta
import logging
import threading
from typing import Any, Callable
import uuid

from vaultwars.backend import engine
from vaultwars.backend.config import VaultWarsSettings
from vaultwars.backend.disclosure import WinnerDisclosureProtocol
from vaultwars.backend.escrow import Escrow, create_escrow
from vaultwars.backend.events import EventBus
from vaultwars.backend.errors import InvalidIndex, InvalidRoom, InvalidToken, NoProbesYet
from vaultwars.backend.models import Clock, DisclosureRequest, Probe, RegisteredPlayer, Room, utc_now
from vaultwars.backend.registry import RoomRegistry
from vaultwars.backend.sealed import ConfidentialCompute, EncryptedInput, SealedHandle, create_compute
from vaultwars.backend.security import generate_token, hash_token
from vaultwars.backend.settlement import SettlementEngine
from vaultwars.backend.store import RoomRepository, create_repository
from vaultwars.backend.timeouts import TimeoutGuard
from vaultwars.backend.vault import ConfidentialVaultStore

logger = logging.getLogger(__name__)


class VaultWarsService:
    """Entry point for every room operation and query.

    Mutations run one at a time under a re-entrant lock, so each call sees and
    leaves a consistent room. Queries read the repository directly.
    """

    def __init__(
        self,
        settings: VaultWarsSettings,
        repository: RoomRepository,
        compute: ConfidentialCompute,
        escrow: Escrow,
        events: EventBus | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.compute = compute
        self.escrow = escrow
        self.events = events if events is not None else EventBus()
        self._lock = threading.RLock()

        vaults = ConfidentialVaultStore(compute)
        self.settlement = SettlementEngine(repository=repository, escrow=escrow, events=self.events)
        self.registry = RoomRegistry(
            repository=repository,
            vaults=vaults,
            escrow=escrow,
            events=self.events,
            min_wager=settings.min_wager,
            clock=clock,
        )
        self.disclosure = WinnerDisclosureProtocol(
            repository=repository,
            compute=compute,
            vaults=vaults,
            events=self.events,
            settlement=self.settlement,
            clock=clock,
        )
        self.timeouts = TimeoutGuard(
            repository=repository,
            registry=self.registry,
            escrow=escrow,
            events=self.events,
            join_timeout=timedelta(seconds=settings.join_timeout_sec),
            move_timeout=timedelta(seconds=settings.move_timeout_sec),
            clock=clock,
        )

    # players

    def register_player(self) -> RegisteredPlayer:
        player_id = f"player-{uuid.uuid4().hex[:16]}"
        token = generate_token()
        self.repository.register_player(player_id, hash_token(token, self.settings.server_salt))
        return RegisteredPlayer(player_id=player_id, token=token)

    def authenticate(self, raw_token: str) -> str:
        player_id = self.repository.resolve_player(hash_token(raw_token, self.settings.server_salt))
        if player_id is None:
            raise InvalidToken()
        return player_id

    # mutations

    def create_room(self, sender: str, code: EncryptedInput, deposited_wager: int) -> int:
        with self._lock:
            return self.registry.create_room(sender, code, deposited_wager)

    def join_room(self, sender: str, room_id: int, code: EncryptedInput, deposited_wager: int) -> Room:
        with self._lock:
            return self.registry.join_room(sender, room_id, code, deposited_wager)

    def cancel_room(self, sender: str, room_id: int) -> Room:
        with self._lock:
            return self.registry.cancel_room(sender, room_id)

    def submit_probe(self, sender: str, room_id: int, guess: EncryptedInput) -> Probe:
        with self._lock:
            return self.disclosure.submit_probe(sender, room_id, guess)

    def fulfill_disclosure(self, room_id: int, revealed_winner: str | None, proof: str, request_id: str) -> bool:
        with self._lock:
            return self.disclosure.fulfill_disclosure(room_id, revealed_winner, proof, request_id=request_id)

    def finalize(self, room_id: int, winner: str) -> bool:
        with self._lock:
            return self.settlement.finalize(room_id, winner)

    def claim_timeout(self, sender: str, room_id: int) -> Room:
        with self._lock:
            return self.timeouts.claim_timeout(sender, room_id)

    def resume_disclosures(self) -> int:
        with self._lock:
            reissued = self.disclosure.reissue_pending()
        if reissued:
            logger.info(f"Re-requested {reissued} winner disclosures for rooms in progress")
        return reissued

    def run_oracle(self, resolve: Callable[[], int]) -> int:
        """Run an oracle resolution pass; its callbacks re-enter under the same lock."""
        with self._lock:
            return resolve()

    # queries

    def get_room(self, room_id: int) -> Room:
        return self.registry.require_room(room_id)

    def room_exists(self, room_id: int) -> bool:
        return self.repository.get_room(room_id) is not None

    def total_rooms(self) -> int:
        return self.repository.count_rooms()

    def is_player_turn(self, room_id: int, identity: str) -> bool:
        return engine.is_player_turn(self.get_room(room_id), identity)

    def get_probe(self, room_id: int, turn_index: int) -> Probe:
        room = self.get_room(room_id)
        if turn_index < 0 or turn_index >= room.turn_count:
            raise InvalidIndex()
        probe = self.repository.get_probe(room_id, turn_index)
        if probe is None:
            raise InvalidIndex()
        return probe

    def list_probes(self, room_id: int) -> list[Probe]:
        self.get_room(room_id)
        return self.repository.list_probes(room_id)

    def last_result(self, room_id: int) -> tuple[SealedHandle, SealedHandle]:
        """Sealed (breaches, signals) of the latest probe."""
        room = self.get_room(room_id)
        if room.turn_count == 0:
            raise NoProbesYet()
        probe = self.get_probe(room_id, room.turn_count - 1)
        return probe.breaches, probe.signals

    def wins_of(self, identity: str) -> int:
        return self.repository.get_wins(identity)

    def disclosure_requests(self, room_id: int) -> list[DisclosureRequest]:
        self.get_room(room_id)
        return self.repository.list_disclosure_requests(room_id)

    def room_events(self, room_id: int) -> list[dict[str, Any]]:
        if not self.room_exists(room_id):
            raise InvalidRoom()
        return self.events.events_for(room_id)


def create_service(settings: VaultWarsSettings, clock: Clock = utc_now) -> VaultWarsService:
    """Build a service on PostgreSQL when a database URL is set, in memory otherwise.

    Rooms, sealed values and escrow always share one backend, and reveals
    that were still outstanding when the process stopped are asked for again.
    """
    service = VaultWarsService(
        settings=settings,
        repository=create_repository(settings.database_url),
        compute=create_compute(settings.server_salt, settings.database_url),
        escrow=create_escrow(settings.database_url),
        clock=clock,
    )
    service.resume_disclosures()
    return service
