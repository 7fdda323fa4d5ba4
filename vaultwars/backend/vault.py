"""Sealing of player codes and vault resolution."""

from __future__ import annotations

from vaultwars.backend.errors import InvalidCode, NotAPlayer
from vaultwars.backend.models import CODE_LENGTH, Room, Vault
from vaultwars.backend.sealed import ConfidentialCompute, EncryptedInput


class ConfidentialVaultStore:
    """Turns encrypted client input into sealed vaults. Never decrypts anything."""

    def __init__(self, compute: ConfidentialCompute) -> None:
        self._compute = compute

    def seal_code(self, code: EncryptedInput, owner: str) -> Vault:
        """Seal all symbols of ``code``; the owner keeps read access to its own vault."""
        if len(code.ciphertexts) != CODE_LENGTH:
            raise InvalidCode()
        handles = self._compute.seal_batch(tuple(code.ciphertexts), code.proof, owner)
        for handle in handles:
            self._compute.grant_access(handle, owner)
        return handles

    def target_vault(self, room: Room, submitter: str) -> Vault:
        """Vault a probe from ``submitter`` is scored against."""
        if submitter == room.creator:
            return room.opponent_vault
        if submitter == room.opponent:
            return room.creator_vault
        raise NotAPlayer()
