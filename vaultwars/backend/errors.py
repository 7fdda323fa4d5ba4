"""Error taxonomy for room, probe and settlement operations."""

from __future__ import annotations


class VaultWarsError(Exception):
    """Base class for rejected operations. Raising one leaves state untouched."""

    code = "vaultwars_error"
    status_code = 400
    default_message = "VaultWars: Operation rejected"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidRoom(VaultWarsError):
    code = "invalid_room"
    status_code = 404
    default_message = "VaultWars: Invalid room ID"


class WrongPhase(VaultWarsError):
    code = "wrong_phase"
    status_code = 409
    default_message = "VaultWars: Room not in required phase"


class NotAPlayer(VaultWarsError):
    code = "not_a_player"
    status_code = 403
    default_message = "VaultWars: Not a player in this room"


class OwnRoomJoinAttempt(VaultWarsError):
    code = "own_room"
    status_code = 403
    default_message = "VaultWars: Cannot join own room"


class NotYourTurn(VaultWarsError):
    code = "not_your_turn"
    status_code = 409
    default_message = "VaultWars: Not your turn"


class InsufficientWager(VaultWarsError):
    code = "insufficient_wager"
    default_message = "VaultWars: Insufficient wager amount"


class WagerMismatch(VaultWarsError):
    code = "wager_mismatch"
    default_message = "VaultWars: Wager amount mismatch"


class UnauthorizedCanceller(VaultWarsError):
    code = "unauthorized_canceller"
    status_code = 403
    default_message = "VaultWars: Only creator can cancel"


class TimeoutNotReached(VaultWarsError):
    code = "timeout_not_reached"
    status_code = 409
    default_message = "VaultWars: Timeout not reached"


class TransferFailed(VaultWarsError):
    code = "transfer_failed"
    status_code = 502
    default_message = "VaultWars: Transfer failed"


class ProofVerificationFailed(VaultWarsError):
    code = "proof_verification_failed"
    default_message = "VaultWars: Proof verification failed"


class InvalidIndex(VaultWarsError):
    code = "invalid_index"
    status_code = 404
    default_message = "VaultWars: Invalid turn index"


class NoProbesYet(VaultWarsError):
    code = "no_probes_yet"
    status_code = 404
    default_message = "VaultWars: No probes submitted yet"


class InvalidCode(VaultWarsError):
    code = "invalid_code"
    status_code = 422
    default_message = "VaultWars: Code must have exactly 4 symbols"


class SealedAccessDenied(VaultWarsError):
    code = "sealed_access_denied"
    status_code = 403
    default_message = "VaultWars: Not authorized for this sealed value"


class InvalidToken(VaultWarsError):
    code = "invalid_token"
    status_code = 401
    default_message = "VaultWars: Unknown player token"


class UnknownSealedValue(VaultWarsError):
    code = "unknown_sealed_value"
    status_code = 404
    default_message = "VaultWars: Unknown sealed value"
