"""Liveness backstop for abandoned rooms and stalled turns."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
import logging

from vaultwars.backend import engine
from vaultwars.backend.escrow import Escrow
from vaultwars.backend.events import EventBus
from vaultwars.backend.errors import NotAPlayer, TimeoutNotReached, UnauthorizedCanceller, WrongPhase
from vaultwars.backend.models import Clock, Phase, Room, utc_now
from vaultwars.backend.registry import RoomRegistry
from vaultwars.backend.settlement import pot_of, transfer_then_record
from vaultwars.backend.store import RoomRepository

logger = logging.getLogger(__name__)


class TimeoutGuard:
    def __init__(
        self,
        repository: RoomRepository,
        registry: RoomRegistry,
        escrow: Escrow,
        events: EventBus,
        join_timeout: timedelta,
        move_timeout: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._escrow = escrow
        self._events = events
        self._join_timeout = join_timeout
        self._move_timeout = move_timeout
        self._clock = clock

    def claim_timeout(self, sender: str, room_id: int) -> Room:
        room = self._registry.require_room(room_id)
        if room.phase == Phase.WAITING_FOR_JOIN:
            return self._expire_unjoined(sender, room)
        if room.phase == Phase.IN_PROGRESS:
            return self._forfeit_stalled_turn(sender, room)
        raise WrongPhase()

    def _expire_unjoined(self, sender: str, room: Room) -> Room:
        if self._clock() - room.created_at < self._join_timeout:
            raise TimeoutNotReached()
        if sender != room.creator:
            raise UnauthorizedCanceller()
        return self._registry.close_unjoined(room, by=sender)

    def _forfeit_stalled_turn(self, sender: str, room: Room) -> Room:
        if self._clock() - room.last_activity_at < self._move_timeout:
            raise TimeoutNotReached()
        claimant = engine.waiting_participant(room)
        if claimant is None or sender != claimant:
            raise NotAPlayer()

        amount = pot_of(room)
        finished = replace(room, phase=Phase.FINISHED, winner=claimant)
        transfer_then_record(
            self._escrow,
            room_id=room.room_id,
            recipient=claimant,
            amount=amount,
            record=lambda: self._repository.finish_room(finished),
        )
        logger.info(f"Room {room.room_id} forfeited by {engine.current_mover(room)}, {claimant} receives {amount}")
        self._events.publish("game_finished", room.room_id, winner=claimant, amount=amount)
        return finished
