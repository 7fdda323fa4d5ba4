"""VaultWars: a two-player code-breaking duel over sealed values."""
