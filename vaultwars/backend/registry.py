"""Room lifecycle before play: create, join and cancel."""

from __future__ import annotations

from dataclasses import replace
import logging

from vaultwars.backend.escrow import Escrow
from vaultwars.backend.events import EventBus
from vaultwars.backend.errors import (
    InsufficientWager,
    InvalidRoom,
    OwnRoomJoinAttempt,
    UnauthorizedCanceller,
    WagerMismatch,
    WrongPhase,
)
from vaultwars.backend.models import Clock, Phase, Room, utc_now
from vaultwars.backend.sealed import EncryptedInput
from vaultwars.backend.settlement import transfer_then_record
from vaultwars.backend.store import RoomRepository
from vaultwars.backend.vault import ConfidentialVaultStore

logger = logging.getLogger(__name__)


class RoomRegistry:
    def __init__(
        self,
        repository: RoomRepository,
        vaults: ConfidentialVaultStore,
        escrow: Escrow,
        events: EventBus,
        min_wager: int,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._vaults = vaults
        self._escrow = escrow
        self._events = events
        self._min_wager = min_wager
        self._clock = clock

    def create_room(self, sender: str, code: EncryptedInput, deposited_wager: int) -> int:
        if deposited_wager < self._min_wager:
            raise InsufficientWager()
        vault = self._vaults.seal_code(code, owner=sender)
        now = self._clock()
        room = self._repository.create_room(
            Room(
                room_id=0,
                creator=sender,
                wager=deposited_wager,
                phase=Phase.WAITING_FOR_JOIN,
                creator_vault=vault,
                created_at=now,
                last_activity_at=now,
            )
        )
        self._escrow.deposit(room_id=room.room_id, identity=sender, amount=deposited_wager)
        logger.info(f"Room {room.room_id} created by {sender} with wager {deposited_wager}")
        self._events.publish("room_created", room.room_id, creator=sender, wager=deposited_wager)
        self._events.publish("vault_submitted", room.room_id, player=sender)
        return room.room_id

    def join_room(self, sender: str, room_id: int, code: EncryptedInput, deposited_wager: int) -> Room:
        room = self.require_room(room_id)
        if room.phase != Phase.WAITING_FOR_JOIN:
            raise WrongPhase()
        if sender == room.creator:
            raise OwnRoomJoinAttempt()
        if deposited_wager != room.wager:
            raise WagerMismatch()

        vault = self._vaults.seal_code(code, owner=sender)
        joined = replace(
            room,
            opponent=sender,
            opponent_vault=vault,
            phase=Phase.IN_PROGRESS,
            last_activity_at=self._clock(),
        )
        self._escrow.deposit(room_id=room_id, identity=sender, amount=deposited_wager)
        try:
            self._repository.save_room(joined)
        except Exception:
            logger.warning(f"Room {room_id} join by {sender} not stored, returning the deposit")
            self._escrow.refund(room_id=room_id, recipient=sender, amount=deposited_wager)
            raise
        logger.info(f"Room {room_id} joined by {sender}")
        self._events.publish("room_joined", room_id, opponent=sender)
        self._events.publish("vault_submitted", room_id, player=sender)
        return joined

    def cancel_room(self, sender: str, room_id: int) -> Room:
        room = self.require_room(room_id)
        if room.phase != Phase.WAITING_FOR_JOIN or room.opponent is not None:
            raise WrongPhase()
        if sender != room.creator:
            raise UnauthorizedCanceller()
        return self.close_unjoined(room, by=sender)

    def close_unjoined(self, room: Room, by: str) -> Room:
        """Refund the creator and cancel a room nobody joined."""
        cancelled = replace(room, phase=Phase.CANCELLED)
        transfer_then_record(
            self._escrow,
            room_id=room.room_id,
            recipient=room.creator,
            amount=room.wager,
            record=lambda: self._repository.save_room(cancelled),
            refund=True,
        )
        logger.info(f"Room {room.room_id} cancelled by {by}")
        self._events.publish("room_cancelled", room.room_id, by=by)
        return cancelled

    def require_room(self, room_id: int) -> Room:
        room = self._repository.get_room(room_id)
        if room is None:
            raise InvalidRoom()
        return room
