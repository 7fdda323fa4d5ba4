"""Probe submission and the asynchronous winner reveal.

``submit_probe`` scores a guess, stores the sealed results and asks the
confidential-compute oracle to disclose the round's candidate winner. It does
not wait: the oracle later calls ``fulfill_disclosure``, which checks the room
again because other probes may have landed in the meantime. Each request
keeps the handle it asked for, so a reveal is checked against its own round.
A reveal for a room that is already settled, or one naming nobody, is ignored
rather than treated as a fault.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any

from vaultwars.backend import engine
from vaultwars.backend.events import EventBus
from vaultwars.backend.errors import InvalidRoom, NotYourTurn, ProofVerificationFailed, WrongPhase
from vaultwars.backend.models import (
    NULL_IDENTITY,
    Clock,
    DisclosureRequest,
    Phase,
    Probe,
    utc_now,
)
from vaultwars.backend.scoring import score_probe
from vaultwars.backend.sealed import EADDRESS, ConfidentialCompute, EncryptedInput, SealedHandle
from vaultwars.backend.settlement import SettlementEngine
from vaultwars.backend.store import RoomRepository
from vaultwars.backend.vault import ConfidentialVaultStore

logger = logging.getLogger(__name__)


class WinnerDisclosureProtocol:
    def __init__(
        self,
        repository: RoomRepository,
        compute: ConfidentialCompute,
        vaults: ConfidentialVaultStore,
        events: EventBus,
        settlement: SettlementEngine,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self._compute = compute
        self._vaults = vaults
        self._events = events
        self._settlement = settlement
        self._clock = clock

    def submit_probe(self, sender: str, room_id: int, guess: EncryptedInput) -> Probe:
        room = self._repository.get_room(room_id)
        if room is None:
            raise InvalidRoom()
        if room.phase != Phase.IN_PROGRESS:
            raise WrongPhase()
        if not engine.is_player_turn(room, sender):
            raise NotYourTurn()

        sealed_guess = self._vaults.seal_code(guess, owner=sender)
        target = self._vaults.target_vault(room, sender)
        score = score_probe(self._compute, target, sealed_guess)

        null_winner = self._compute.constant(EADDRESS, NULL_IDENTITY)
        candidate = self._compute.constant(EADDRESS, sender)
        pending_winner = self._compute.select(score.is_win, candidate, null_winner)

        disclosed = (score.breaches, score.signals, score.is_win, *sealed_guess, pending_winner)
        for handle in disclosed:
            for participant in room.participants:
                self._compute.grant_access(handle, participant)
            self._compute.mark_publicly_disclosable(handle)

        now = self._clock()
        probe = Probe(
            room_id=room_id,
            turn_index=room.turn_count,
            submitter=sender,
            guess=sealed_guess,
            breaches=score.breaches,
            signals=score.signals,
            is_win=score.is_win,
            submitted_at=now,
        )
        advanced = replace(
            room,
            turn_count=room.turn_count + 1,
            pending_winner=pending_winner,
            last_activity_at=now,
        )
        self._repository.record_probe(advanced, probe)

        request_id = self._request(room_id, pending_winner, probe.turn_index)
        logger.info(f"Room {room_id} probe {probe.turn_index} by {sender} recorded, disclosure {request_id} requested")
        self._events.publish(
            "result_computed",
            room_id,
            submitter=sender,
            isWin=score.is_win,
            guess=sealed_guess,
            breaches=score.breaches,
            signals=score.signals,
        )
        return probe

    def reissue_pending(self) -> int:
        """Ask again for every reveal of rooms still in progress.

        The oracle queue does not survive a restart. Re-asking is safe because
        losing rounds reveal nobody and a settled room ignores late answers.
        """
        reissued = 0
        for room in self._repository.list_rooms(Phase.IN_PROGRESS):
            asked: set[SealedHandle] = set()
            for request in self._repository.list_disclosure_requests(room.room_id):
                if request.handle in asked:
                    continue
                asked.add(request.handle)
                self._request(room.room_id, request.handle, request.turn_index)
                reissued += 1
        return reissued

    def fulfill_disclosure(self, room_id: int, revealed_winner: str | None, proof: str, request_id: str) -> bool:
        """Settle the room when the oracle reveals a participant as winner.

        Returns True only when this call paid out. A room that is no longer in
        progress, a null identity, or an identity outside the room is a no-op.
        A proof that does not match the requested handle aborts.
        """
        room = self._repository.get_room(room_id)
        if room is None:
            raise InvalidRoom()
        if room.phase != Phase.IN_PROGRESS:
            logger.debug(f"Ignoring disclosure {request_id}: room {room_id} is {room.phase.name}")
            return False

        request = self._repository.get_disclosure_request(request_id)
        if request is None or request.room_id != room_id:
            logger.warning(f"Disclosure {request_id} was not issued for room {room_id}")
            raise ProofVerificationFailed()
        cleartext = NULL_IDENTITY if revealed_winner is None else revealed_winner
        if not self._compute.verify_disclosure_proof(request.handle, cleartext, proof):
            logger.warning(f"Rejected disclosure proof for request {request_id} in room {room_id}")
            raise ProofVerificationFailed()

        if cleartext == NULL_IDENTITY or cleartext not in room.participants:
            logger.debug(f"Disclosure {request_id} for room {room_id} revealed no winner")
            return False

        self._events.publish("winner_disclosed", room_id, winner=cleartext)
        return self._settlement.finalize(room_id, cleartext)

    def _request(self, room_id: int, handle: SealedHandle, turn_index: int) -> str:
        request_id = self._compute.request_disclosure(handle, self._on_disclosure)
        self._repository.add_disclosure_request(
            DisclosureRequest(
                request_id=request_id,
                room_id=room_id,
                handle=handle,
                turn_index=turn_index,
                requested_at=self._clock(),
            )
        )
        return request_id

    def _on_disclosure(self, request_id: str, cleartext: Any, proof: str) -> None:
        request = self._repository.get_disclosure_request(request_id)
        if request is None:
            logger.warning(f"Oracle answered unknown disclosure request {request_id}")
            raise ProofVerificationFailed()
        self.fulfill_disclosure(request.room_id, cleartext, proof, request_id=request_id)
