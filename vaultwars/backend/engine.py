"""Turn rules derived from room state."""

from __future__ import annotations

from vaultwars.backend.models import Phase, Room


def current_mover(room: Room) -> str | None:
    """Identity expected to submit the next probe, or None outside of play."""
    if room.phase != Phase.IN_PROGRESS or room.opponent is None:
        return None
    if room.turn_count % 2 == 0:
        return room.creator
    return room.opponent


def is_player_turn(room: Room, identity: str) -> bool:
    mover = current_mover(room)
    return mover is not None and mover == identity


def waiting_participant(room: Room) -> str | None:
    """The participant waiting on the current mover; the only valid forfeit claimant."""
    mover = current_mover(room)
    if mover is None:
        return None
    return room.opponent if mover == room.creator else room.creator
