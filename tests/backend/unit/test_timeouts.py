import pytest

from conftest import CREATOR, OPPONENT, OUTSIDER, WAGER
from vaultwars.backend.errors import (
    InvalidRoom,
    NotAPlayer,
    TimeoutNotReached,
    TransferFailed,
    UnauthorizedCanceller,
    WrongPhase,
)
from vaultwars.backend.escrow import InMemoryEscrow
from vaultwars.backend.models import Phase


def test_unjoined_room_can_be_reclaimed_after_join_timeout(service, open_room, clock, settings) -> None:
    clock.advance(settings.join_timeout_sec - 1)
    with pytest.raises(TimeoutNotReached):
        service.claim_timeout(CREATOR, open_room)

    clock.advance(1)
    room = service.claim_timeout(CREATOR, open_room)

    assert room.phase == Phase.CANCELLED
    assert service.escrow.balance_of(CREATOR) == WAGER
    assert service.escrow.held(open_room) == 0
    assert service.room_events(open_room)[-1]["kind"] == "room_cancelled"


def test_only_creator_reclaims_unjoined_room(service, open_room, clock, settings) -> None:
    clock.advance(settings.join_timeout_sec)

    with pytest.raises(UnauthorizedCanceller):
        service.claim_timeout(OUTSIDER, open_room)
    assert service.get_room(open_room).phase == Phase.WAITING_FOR_JOIN


def test_idle_mover_forfeits_to_waiting_player(service, encrypt, started_room, clock, settings) -> None:
    service.submit_probe(CREATOR, started_room, encrypt([9, 9, 9, 9], CREATOR))
    clock.advance(settings.move_timeout_sec)

    room = service.claim_timeout(CREATOR, started_room)

    assert room.phase == Phase.FINISHED
    assert room.winner == CREATOR
    assert service.wins_of(CREATOR) == 1
    assert service.escrow.balance_of(CREATOR) == 2 * WAGER
    assert service.escrow.held(started_room) == 0
    assert service.room_events(started_room)[-1]["kind"] == "game_finished"


def test_idle_mover_cannot_claim_own_forfeit(service, started_room, clock, settings) -> None:
    clock.advance(settings.move_timeout_sec)

    with pytest.raises(NotAPlayer):
        service.claim_timeout(CREATOR, started_room)
    with pytest.raises(NotAPlayer):
        service.claim_timeout(OUTSIDER, started_room)

    room = service.claim_timeout(OPPONENT, started_room)
    assert room.winner == OPPONENT


def test_move_timeout_counts_from_last_activity(service, encrypt, started_room, clock, settings) -> None:
    clock.advance(settings.move_timeout_sec - 10)
    service.submit_probe(CREATOR, started_room, encrypt([9, 9, 9, 9], CREATOR))
    clock.advance(20)

    with pytest.raises(TimeoutNotReached):
        service.claim_timeout(CREATOR, started_room)


def test_timeout_rejected_for_terminal_rooms(service, started_room, clock, settings) -> None:
    service.finalize(started_room, CREATOR)
    clock.advance(settings.join_timeout_sec + settings.move_timeout_sec)

    with pytest.raises(WrongPhase):
        service.claim_timeout(CREATOR, started_room)
    with pytest.raises(InvalidRoom):
        service.claim_timeout(CREATOR, 999)


def test_failed_forfeit_record_keeps_pot_in_room(service, encrypt, started_room, clock, settings, monkeypatch) -> None:
    service.submit_probe(CREATOR, started_room, encrypt([9, 9, 9, 9], CREATOR))
    clock.advance(settings.move_timeout_sec)

    def unavailable(room) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(service.repository, "finish_room", unavailable)
    with pytest.raises(RuntimeError):
        service.claim_timeout(CREATOR, started_room)

    assert service.get_room(started_room).phase == Phase.IN_PROGRESS
    assert service.escrow.held(started_room) == 2 * WAGER
    assert service.escrow.balance_of(CREATOR) == 0

    monkeypatch.undo()
    room = service.claim_timeout(CREATOR, started_room)
    assert room.winner == CREATOR
    assert service.escrow.balance_of(CREATOR) == 2 * WAGER


def test_failed_reclaim_record_keeps_wager_in_room(service, open_room, clock, settings, monkeypatch) -> None:
    clock.advance(settings.join_timeout_sec)

    def unavailable(room) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(service.repository, "save_room", unavailable)
    with pytest.raises(RuntimeError):
        service.claim_timeout(CREATOR, open_room)

    assert service.get_room(open_room).phase == Phase.WAITING_FOR_JOIN
    assert service.escrow.held(open_room) == WAGER
    assert service.escrow.balance_of(CREATOR) == 0


class _EmptyEscrow(InMemoryEscrow):
    def payout(self, room_id: int, recipient: str, amount: int) -> None:
        raise TransferFailed()


def test_failed_forfeit_transfer_leaves_room_in_progress(service, started_room, clock, settings, monkeypatch) -> None:
    clock.advance(settings.move_timeout_sec)
    failing = _EmptyEscrow(holdings=service.escrow.holdings, balances=service.escrow.balances)
    monkeypatch.setattr(service.timeouts, "_escrow", failing)

    with pytest.raises(TransferFailed):
        service.claim_timeout(OPPONENT, started_room)

    room = service.get_room(started_room)
    assert room.phase == Phase.IN_PROGRESS
    assert room.winner is None
    assert service.wins_of(OPPONENT) == 0
    assert service.escrow.held(started_room) == 2 * WAGER
