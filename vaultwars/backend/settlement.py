"""Idempotent room finalization and payout."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Callable

from vaultwars.backend.escrow import Escrow
from vaultwars.backend.events import EventBus
from vaultwars.backend.errors import InvalidRoom, NotAPlayer
from vaultwars.backend.models import Phase, Room
from vaultwars.backend.store import RoomRepository

logger = logging.getLogger(__name__)


class SettlementEngine:
    def __init__(self, repository: RoomRepository, escrow: Escrow, events: EventBus) -> None:
        self._repository = repository
        self._escrow = escrow
        self._events = events

    def finalize(self, room_id: int, winner: str) -> bool:
        """Pay the pot to ``winner`` and close the room.

        Returns False without side effects when the room is already finished,
        which absorbs duplicated or retried disclosure callbacks. A failed
        transfer leaves the room as it was, and a failed record update takes
        the payout back.
        """
        room = self._repository.get_room(room_id)
        if room is None:
            raise InvalidRoom()
        if room.phase == Phase.FINISHED:
            logger.debug(f"Room {room_id} already finished, ignoring settlement for {winner}")
            return False
        if winner not in room.participants:
            raise NotAPlayer()

        amount = pot_of(room)
        finished = replace(room, phase=Phase.FINISHED, winner=winner)
        transfer_then_record(
            self._escrow,
            room_id=room_id,
            recipient=winner,
            amount=amount,
            record=lambda: self._repository.finish_room(finished),
        )
        logger.info(f"Room {room_id} finished, {winner} receives {amount}")
        self._events.publish("game_finished", room_id, winner=winner, amount=amount)
        return True


def transfer_then_record(
    escrow: Escrow,
    room_id: int,
    recipient: str,
    amount: int,
    record: Callable[[], None],
    refund: bool = False,
) -> None:
    """Release room funds, then store the new room record.

    The funds go back into the room when ``record`` raises, so either both
    happen or neither does.
    """
    if refund:
        escrow.refund(room_id=room_id, recipient=recipient, amount=amount)
    else:
        escrow.payout(room_id=room_id, recipient=recipient, amount=amount)
    try:
        record()
    except Exception:
        logger.warning(f"Room {room_id} record update failed, reclaiming {amount} from {recipient}")
        escrow.reclaim(room_id=room_id, recipient=recipient, amount=amount)
        raise


def pot_of(room: Room) -> int:
    return 2 * room.wager
