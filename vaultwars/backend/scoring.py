"""Oblivious breach/signal scoring over sealed symbols.

Breaches count guess positions equal to the vault at the same position.
Signals count remaining guess symbols found at a different, still unclaimed
vault position. Pairs are examined in ascending (guess, vault) order and the
first pair to claim a slot keeps it, so repeated symbols are credited at most
once per available counterpart.

Everything here goes through ``ConfidentialCompute``; no symbol is ever read.
"""

from __future__ import annotations

from vaultwars.backend.models import CODE_LENGTH, ProbeScore, Vault
from vaultwars.backend.sealed import EUINT8, ConfidentialCompute


def score_probe(compute: ConfidentialCompute, vault: Vault, guess: Vault) -> ProbeScore:
    if len(vault) != CODE_LENGTH or len(guess) != CODE_LENGTH:
        raise ValueError(f"vault and guess must both hold {CODE_LENGTH} sealed symbols")

    zero = compute.constant(EUINT8, 0)
    one = compute.constant(EUINT8, 1)

    breaches = zero
    guess_matched = []
    vault_matched = []
    for position in range(CODE_LENGTH):
        exact = compute.equals(vault[position], guess[position])
        guess_matched.append(exact)
        vault_matched.append(exact)
        breaches = compute.add(breaches, compute.select(exact, one, zero))

    signals = zero
    for i in range(CODE_LENGTH):
        for j in range(CODE_LENGTH):
            if i == j:
                continue
            free = compute.and_(compute.not_(guess_matched[i]), compute.not_(vault_matched[j]))
            claim = compute.and_(compute.equals(guess[i], vault[j]), free)
            signals = compute.add(signals, compute.select(claim, one, zero))
            guess_matched[i] = compute.or_(guess_matched[i], claim)
            vault_matched[j] = compute.or_(vault_matched[j], claim)

    is_win = compute.equals(breaches, compute.constant(EUINT8, CODE_LENGTH))
    return ProbeScore(breaches=breaches, signals=signals, is_win=is_win)
