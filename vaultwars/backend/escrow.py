"""Wager escrow boundary: deposit on create/join, pay out or refund on exit."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from vaultwars.backend.errors import TransferFailed

logger = logging.getLogger(__name__)


class Escrow(Protocol):
    def deposit(self, room_id: int, identity: str, amount: int) -> None:
        """Hold ``amount`` from ``identity`` for ``room_id``."""

    def payout(self, room_id: int, recipient: str, amount: int) -> None:
        """Release ``amount`` of the room's holdings to ``recipient``."""

    def refund(self, room_id: int, recipient: str, amount: int) -> None:
        """Return a deposit to ``recipient``."""

    def reclaim(self, room_id: int, recipient: str, amount: int) -> None:
        """Undo a payout or refund whose record update did not go through."""

    def held(self, room_id: int) -> int:
        """Amount currently held for ``room_id``."""


@dataclass
class InMemoryEscrow:
    holdings: dict[int, int] = field(default_factory=lambda: defaultdict(int))
    balances: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def deposit(self, room_id: int, identity: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailed("VaultWars: Negative deposit")
        self.holdings[room_id] += amount

    def payout(self, room_id: int, recipient: str, amount: int) -> None:
        self._release(room_id=room_id, recipient=recipient, amount=amount)

    def refund(self, room_id: int, recipient: str, amount: int) -> None:
        self._release(room_id=room_id, recipient=recipient, amount=amount)

    def reclaim(self, room_id: int, recipient: str, amount: int) -> None:
        if amount > self.balance_of(recipient):
            raise TransferFailed()
        self.balances[recipient] -= amount
        self.holdings[room_id] += amount

    def held(self, room_id: int) -> int:
        return self.holdings.get(room_id, 0)

    def balance_of(self, identity: str) -> int:
        return self.balances.get(identity, 0)

    def _release(self, room_id: int, recipient: str, amount: int) -> None:
        if amount > self.held(room_id):
            logger.warning(f"Room {room_id} holds {self.held(room_id)}, cannot release {amount}")
            raise TransferFailed()
        self.holdings[room_id] -= amount
        self.balances[recipient] += amount


@dataclass
class PostgresEscrow:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def deposit(self, room_id: int, identity: str, amount: int) -> None:
        if amount < 0:
            raise TransferFailed("VaultWars: Negative deposit")
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO escrow_holdings (room_id, amount) VALUES (%s, %s)
                    ON CONFLICT (room_id) DO UPDATE SET amount = escrow_holdings.amount + EXCLUDED.amount
                    """,
                    (room_id, amount),
                )
            conn.commit()

    def payout(self, room_id: int, recipient: str, amount: int) -> None:
        self._release(room_id=room_id, recipient=recipient, amount=amount)

    def refund(self, room_id: int, recipient: str, amount: int) -> None:
        self._release(room_id=room_id, recipient=recipient, amount=amount)

    def reclaim(self, room_id: int, recipient: str, amount: int) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE escrow_balances SET amount = amount - %s
                    WHERE player_id = %s AND amount >= %s
                    RETURNING amount
                    """,
                    (amount, recipient, amount),
                )
                if cur.fetchone() is None:
                    conn.rollback()
                    raise TransferFailed()
                cur.execute(
                    "UPDATE escrow_holdings SET amount = amount + %s WHERE room_id = %s",
                    (amount, room_id),
                )
            conn.commit()

    def held(self, room_id: int) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT amount FROM escrow_holdings WHERE room_id = %s", (room_id,))
                row = cur.fetchone()
        return 0 if row is None else int(row[0])

    def balance_of(self, identity: str) -> int:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT amount FROM escrow_balances WHERE player_id = %s", (identity,))
                row = cur.fetchone()
        return 0 if row is None else int(row[0])

    def _release(self, room_id: int, recipient: str, amount: int) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE escrow_holdings SET amount = amount - %s
                    WHERE room_id = %s AND amount >= %s
                    RETURNING amount
                    """,
                    (amount, room_id, amount),
                )
                if cur.fetchone() is None:
                    conn.rollback()
                    logger.warning(f"Room {room_id} cannot release {amount}")
                    raise TransferFailed()
                cur.execute(
                    """
                    INSERT INTO escrow_balances (player_id, amount) VALUES (%s, %s)
                    ON CONFLICT (player_id) DO UPDATE SET amount = escrow_balances.amount + EXCLUDED.amount
                    """,
                    (recipient, amount),
                )
            conn.commit()


def create_escrow(database_url: str | None) -> Escrow:
    if database_url:
        return PostgresEscrow(database_url=database_url)
    return InMemoryEscrow()
