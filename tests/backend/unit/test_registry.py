import pytest

from conftest import CREATOR, OPPONENT, OUTSIDER, WAGER
from vaultwars.backend.errors import (
    InsufficientWager,
    InvalidCode,
    InvalidRoom,
    OwnRoomJoinAttempt,
    ProofVerificationFailed,
    SealedAccessDenied,
    UnauthorizedCanceller,
    WagerMismatch,
    WrongPhase,
)
from vaultwars.backend.models import Phase
from vaultwars.backend.sealed import EncryptedInput


def test_create_room_stores_sealed_vault_and_holds_wager(service, encrypt, clock) -> None:
    room_id = service.create_room(CREATOR, encrypt([1, 2, 3, 4], CREATOR), WAGER)

    room = service.get_room(room_id)
    assert room_id == 1
    assert service.total_rooms() == 1
    assert room.creator == CREATOR
    assert room.opponent is None
    assert room.wager == WAGER
    assert room.phase == Phase.WAITING_FOR_JOIN
    assert len(room.creator_vault) == 4
    assert room.created_at == room.last_activity_at == clock.now
    assert service.escrow.held(room_id) == WAGER
    assert [event["kind"] for event in service.room_events(room_id)] == ["room_created", "vault_submitted"]
    assert service.room_events(room_id)[0] == {"kind": "room_created", "roomId": 1, "creator": CREATOR, "wager": WAGER}


def test_creator_can_read_own_vault_but_opponent_cannot(service, started_room) -> None:
    room = service.get_room(started_room)

    assert [service.compute.user_decrypt(handle, CREATOR) for handle in room.creator_vault] == [1, 2, 3, 4]
    with pytest.raises(SealedAccessDenied):
        service.compute.user_decrypt(room.creator_vault[0], OPPONENT)


def test_room_ids_are_monotonic(service, encrypt) -> None:
    first = service.create_room(CREATOR, encrypt([1, 1, 1, 1], CREATOR), WAGER)
    second = service.create_room(OPPONENT, encrypt([2, 2, 2, 2], OPPONENT), WAGER + 5)

    assert (first, second) == (1, 2)
    assert service.total_rooms() == 2
    assert service.get_room(second).wager == WAGER + 5


def test_create_room_rejects_insufficient_wager(service, encrypt, settings) -> None:
    with pytest.raises(InsufficientWager, match="Insufficient wager amount"):
        service.create_room(CREATOR, encrypt([5, 5, 5, 5], CREATOR), settings.min_wager - 1)

    assert service.total_rooms() == 0


def test_create_room_rejects_wrong_code_length(service, encrypt) -> None:
    with pytest.raises(InvalidCode):
        service.create_room(CREATOR, encrypt([1, 2, 3], CREATOR), WAGER)

    assert service.total_rooms() == 0


def test_create_room_rejects_input_encrypted_for_someone_else(service, encrypt) -> None:
    with pytest.raises(ProofVerificationFailed):
        service.create_room(CREATOR, encrypt([1, 2, 3, 4], OPPONENT), WAGER)

    assert service.total_rooms() == 0


def test_join_room_starts_the_game(service, encrypt, open_room, clock) -> None:
    clock.advance(30)

    room = service.join_room(OPPONENT, open_room, encrypt([4, 3, 2, 1], OPPONENT), WAGER)

    assert room.opponent == OPPONENT
    assert room.phase == Phase.IN_PROGRESS
    assert room.turn_count == 0
    assert len(room.opponent_vault) == 4
    assert room.last_activity_at == clock.now
    assert room.created_at < room.last_activity_at
    assert service.escrow.held(open_room) == 2 * WAGER
    assert [event["kind"] for event in service.room_events(open_room)][-2:] == ["room_joined", "vault_submitted"]


def test_join_room_rejects_mismatched_wager(service, encrypt, open_room) -> None:
    with pytest.raises(WagerMismatch, match="Wager amount mismatch"):
        service.join_room(OPPONENT, open_room, encrypt([6, 6, 6, 6], OPPONENT), 2 * WAGER)

    assert service.get_room(open_room).phase == Phase.WAITING_FOR_JOIN
    assert service.escrow.held(open_room) == WAGER


def test_join_room_rejects_creator(service, encrypt, open_room) -> None:
    with pytest.raises(OwnRoomJoinAttempt, match="Cannot join own room"):
        service.join_room(CREATOR, open_room, encrypt([7, 7, 7, 7], CREATOR), WAGER)


def test_join_room_rejects_room_in_progress(service, encrypt, started_room) -> None:
    with pytest.raises(WrongPhase, match="Room not in required phase"):
        service.join_room(OUTSIDER, started_room, encrypt([8, 8, 8, 8], OUTSIDER), WAGER)

    assert service.get_room(started_room).opponent == OPPONENT


def test_join_room_rejects_unknown_room(service, encrypt) -> None:
    with pytest.raises(InvalidRoom, match="Invalid room ID"):
        service.join_room(OPPONENT, 999, encrypt([1, 1, 1, 1], OPPONENT), WAGER)


def test_cancel_room_refunds_creator(service, open_room) -> None:
    room = service.cancel_room(CREATOR, open_room)

    assert room.phase == Phase.CANCELLED
    assert service.escrow.held(open_room) == 0
    assert service.escrow.balance_of(CREATOR) == WAGER
    assert service.room_events(open_room)[-1] == {"kind": "room_cancelled", "roomId": open_room, "by": CREATOR}


def test_cancel_room_rejects_non_creator(service, open_room) -> None:
    with pytest.raises(UnauthorizedCanceller, match="Only creator can cancel"):
        service.cancel_room(OPPONENT, open_room)

    assert service.get_room(open_room).phase == Phase.WAITING_FOR_JOIN


def test_cancel_room_fails_once_opponent_joined(service, started_room) -> None:
    with pytest.raises(WrongPhase):
        service.cancel_room(CREATOR, started_room)

    assert service.escrow.held(started_room) == 2 * WAGER


def test_cancelled_room_cannot_be_cancelled_or_joined_again(service, encrypt, open_room) -> None:
    service.cancel_room(CREATOR, open_room)

    with pytest.raises(WrongPhase):
        service.cancel_room(CREATOR, open_room)
    with pytest.raises(WrongPhase):
        service.join_room(OPPONENT, open_room, encrypt([1, 1, 1, 1], OPPONENT), WAGER)
    assert service.escrow.balance_of(CREATOR) == WAGER


def test_rejected_join_leaves_the_encrypted_code_usable(service, encrypt, open_room) -> None:
    code = encrypt([4, 3, 2, 1], OPPONENT)
    tampered = EncryptedInput(ciphertexts=code.ciphertexts[:3] + ("ct-forged",), proof=code.proof)

    with pytest.raises(ProofVerificationFailed):
        service.join_room(OPPONENT, open_room, tampered, WAGER)

    joined = service.join_room(OPPONENT, open_room, code, WAGER)
    assert joined.phase == Phase.IN_PROGRESS
    assert len(joined.opponent_vault) == 4


def test_join_that_cannot_be_stored_returns_the_deposit(service, encrypt, open_room, monkeypatch) -> None:
    def unavailable(room) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(service.repository, "save_room", unavailable)
    with pytest.raises(RuntimeError):
        service.join_room(OPPONENT, open_room, encrypt([4, 3, 2, 1], OPPONENT), WAGER)

    assert service.get_room(open_room).phase == Phase.WAITING_FOR_JOIN
    assert service.escrow.held(open_room) == WAGER
    assert service.escrow.balance_of(OPPONENT) == WAGER


def test_cancel_that_cannot_be_stored_keeps_the_wager_held(service, open_room, monkeypatch) -> None:
    def unavailable(room) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(service.repository, "save_room", unavailable)
    with pytest.raises(RuntimeError):
        service.cancel_room(CREATOR, open_room)

    assert service.get_room(open_room).phase == Phase.WAITING_FOR_JOIN
    assert service.escrow.held(open_room) == WAGER
    assert service.escrow.balance_of(CREATOR) == 0
