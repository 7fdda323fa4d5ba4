"""Sealed-value primitives and an in-memory confidential-compute backend.

Game logic only ever holds ``SealedHandle`` references and combines them through
the ``ConfidentialCompute`` operations. ``InMemoryConfidentialCompute`` stands in
for a real encrypted backend: every handle points at a single-assignment record
holding a tagged cleartext value, and the read paths enforce the same access
grants a real service would.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, Protocol
import uuid

from vaultwars.backend.errors import ProofVerificationFailed, SealedAccessDenied, UnknownSealedValue
from vaultwars.backend.security import sign_proof, verify_proof

logger = logging.getLogger(__name__)

EUINT8 = "euint8"
EBOOL = "ebool"
EADDRESS = "eaddress"
SEALED_KINDS = (EUINT8, EBOOL, EADDRESS)

DisclosureCallback = Callable[[str, Any, str], object]


@dataclass(frozen=True)
class SealedHandle:
    handle_id: str
    kind: str

    def __str__(self) -> str:
        return f"{self.kind}:{self.handle_id}"

    @classmethod
    def parse(cls, text: str) -> "SealedHandle":
        kind, sep, handle_id = text.partition(":")
        if not sep or kind not in SEALED_KINDS or not handle_id:
            raise ValueError(f"Not a sealed handle: {text!r}")
        return cls(handle_id=handle_id, kind=kind)


@dataclass(frozen=True)
class EncryptedInput:
    """Client-side encrypted symbols plus the proof binding them to a sender."""

    ciphertexts: tuple[str, ...]
    proof: str


class ConfidentialCompute(Protocol):
    def seal(self, ciphertext: str, proof: str, sender: str) -> SealedHandle:
        """Import an external ciphertext after checking its input proof."""

    def seal_batch(self, ciphertexts: tuple[str, ...], proof: str, sender: str) -> tuple[SealedHandle, ...]:
        """Import all ciphertexts of one input, or none of them."""

    def constant(self, kind: str, value: Any) -> SealedHandle:
        """Trivially encrypt a public constant."""

    def equals(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        """Sealed equality test returning an ebool handle."""

    def and_(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        """Sealed boolean AND."""

    def or_(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        """Sealed boolean OR."""

    def not_(self, value: SealedHandle) -> SealedHandle:
        """Sealed boolean NOT."""

    def select(self, condition: SealedHandle, if_true: SealedHandle, if_false: SealedHandle) -> SealedHandle:
        """Sealed conditional selection."""

    def add(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        """Sealed 8-bit addition."""

    def grant_access(self, handle: SealedHandle, identity: str) -> None:
        """Allow ``identity`` to decrypt ``handle``."""

    def mark_publicly_disclosable(self, handle: SealedHandle) -> None:
        """Allow anyone to request the cleartext of ``handle``."""

    def request_disclosure(self, handle: SealedHandle, callback: DisclosureCallback) -> str:
        """Queue an asynchronous reveal; returns the request id."""

    def verify_disclosure_proof(self, handle: SealedHandle, cleartext: Any, proof: str) -> bool:
        """Check an oracle correctness proof for ``handle``."""


@dataclass(frozen=True)
class _SealedValue:
    kind: str
    value: Any


@dataclass(frozen=True)
class _PendingInput:
    value: int
    sender: str
    batch: tuple[str, ...]


@dataclass(frozen=True)
class _PendingDisclosure:
    request_id: str
    handle: SealedHandle
    callback: DisclosureCallback


class InMemoryConfidentialCompute:
    """Tagged-cleartext backend for tests and local runs.

    Sealed values are never deleted: a long-running process keeps every handle
    it ever produced (roughly a hundred per probe). Use
    ``PostgresConfidentialCompute`` for anything that must outlive the process.
    """

    def __init__(self, server_salt: str) -> None:
        self._secret = f"confidential-compute:{server_salt}"
        self._values: dict[str, _SealedValue] = {}
        self._inputs: dict[str, _PendingInput] = {}
        self._access: dict[str, set[str]] = {}
        self._public: set[str] = set()
        self._pending: deque[_PendingDisclosure] = deque()

    # client side

    def encrypt_input(self, values: list[int] | tuple[int, ...], sender: str) -> EncryptedInput:
        ciphertexts = tuple(f"ct-{uuid.uuid4().hex}" for _ in values)
        proof = sign_proof(self._secret, "input", sender, *ciphertexts)
        self._put_inputs(
            {
                ciphertext: _PendingInput(value=_as_uint8(value), sender=sender, batch=ciphertexts)
                for ciphertext, value in zip(ciphertexts, values)
            }
        )
        return EncryptedInput(ciphertexts=ciphertexts, proof=proof)

    def user_decrypt(self, handle: SealedHandle, identity: str) -> Any:
        if not self._has_access(handle.handle_id, identity):
            raise SealedAccessDenied()
        return self._read(handle)

    def public_decrypt(self, handle: SealedHandle) -> Any:
        if not self._is_public(handle.handle_id):
            raise SealedAccessDenied()
        return self._read(handle)

    # primitive set

    def seal(self, ciphertext: str, proof: str, sender: str) -> SealedHandle:
        return self.seal_batch((ciphertext,), proof, sender)[0]

    def seal_batch(self, ciphertexts: tuple[str, ...], proof: str, sender: str) -> tuple[SealedHandle, ...]:
        """Seal every ciphertext of one input, or none of them."""
        pending = [self._get_input(ciphertext) for ciphertext in ciphertexts]
        for item in pending:
            if (
                item is None
                or item.sender != sender
                or not verify_proof(proof, self._secret, "input", sender, *item.batch)
            ):
                raise ProofVerificationFailed("VaultWars: Invalid input proof")
        if len(set(ciphertexts)) != len(ciphertexts):
            raise ProofVerificationFailed("VaultWars: Invalid input proof")

        handles = tuple(SealedHandle(handle_id=uuid.uuid4().hex, kind=EUINT8) for _ in ciphertexts)
        sealed = {handle.handle_id: _SealedValue(kind=EUINT8, value=item.value) for handle, item in zip(handles, pending)}
        self._consume_inputs(ciphertexts, sealed)
        return handles

    def constant(self, kind: str, value: Any) -> SealedHandle:
        if kind == EUINT8:
            return self._store(kind, _as_uint8(value))
        if kind == EBOOL:
            return self._store(kind, bool(value))
        if kind == EADDRESS:
            return self._store(kind, str(value))
        raise ValueError(f"Unknown sealed kind: {kind}")

    def equals(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        _require_same_kind(left, right)
        return self._store(EBOOL, self._read(left) == self._read(right))

    def and_(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        return self._store(EBOOL, self._read_bool(left) and self._read_bool(right))

    def or_(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        return self._store(EBOOL, self._read_bool(left) or self._read_bool(right))

    def not_(self, value: SealedHandle) -> SealedHandle:
        return self._store(EBOOL, not self._read_bool(value))

    def select(self, condition: SealedHandle, if_true: SealedHandle, if_false: SealedHandle) -> SealedHandle:
        _require_same_kind(if_true, if_false)
        chosen = if_true if self._read_bool(condition) else if_false
        return self._store(chosen.kind, self._read(chosen))

    def add(self, left: SealedHandle, right: SealedHandle) -> SealedHandle:
        if left.kind != EUINT8 or right.kind != EUINT8:
            raise TypeError("add expects euint8 handles")
        return self._store(EUINT8, (self._read(left) + self._read(right)) % 256)

    def grant_access(self, handle: SealedHandle, identity: str) -> None:
        self._read(handle)
        self._grant(handle.handle_id, identity)

    def mark_publicly_disclosable(self, handle: SealedHandle) -> None:
        self._read(handle)
        self._mark_public(handle.handle_id)

    def request_disclosure(self, handle: SealedHandle, callback: DisclosureCallback) -> str:
        if not self._is_public(handle.handle_id):
            raise SealedAccessDenied()
        request_id = f"req-{uuid.uuid4().hex}"
        self._pending.append(_PendingDisclosure(request_id=request_id, handle=handle, callback=callback))
        return request_id

    def verify_disclosure_proof(self, handle: SealedHandle, cleartext: Any, proof: str) -> bool:
        return verify_proof(proof, self._secret, "disclose", handle, _canonical(cleartext))

    # oracle side

    def pending_disclosures(self) -> int:
        return len(self._pending)

    def resolve_pending(self) -> int:
        """Resolve queued disclosure requests in FIFO order.

        A request whose callback raises goes to the back of the queue before
        the error propagates, so the next pass answers it again.
        """
        resolved = 0
        while self._pending:
            request = self._pending.popleft()
            cleartext = self._read(request.handle)
            proof = sign_proof(self._secret, "disclose", request.handle, _canonical(cleartext))
            logger.debug(f"Resolving disclosure {request.request_id}")
            try:
                request.callback(request.request_id, cleartext, proof)
            except Exception:
                logger.warning(f"Disclosure {request.request_id} callback failed, requeued")
                self._pending.append(request)
                raise
            resolved += 1
        return resolved

    def _store(self, kind: str, value: Any) -> SealedHandle:
        handle = SealedHandle(handle_id=uuid.uuid4().hex, kind=kind)
        self._put_value(handle.handle_id, _SealedValue(kind=kind, value=value))
        return handle

    def _read(self, handle: SealedHandle) -> Any:
        sealed = self._get_value(handle.handle_id)
        if sealed is None or sealed.kind != handle.kind:
            raise UnknownSealedValue(f"VaultWars: Unknown sealed value {handle}")
        return sealed.value

    def _read_bool(self, handle: SealedHandle) -> bool:
        if handle.kind != EBOOL:
            raise TypeError("boolean operation expects ebool handles")
        return bool(self._read(handle))

    # table access, overridden by durable backends

    def _put_value(self, handle_id: str, sealed: _SealedValue) -> None:
        self._values[handle_id] = sealed

    def _get_value(self, handle_id: str) -> _SealedValue | None:
        return self._values.get(handle_id)

    def _put_inputs(self, inputs: dict[str, _PendingInput]) -> None:
        self._inputs.update(inputs)

    def _get_input(self, ciphertext: str) -> _PendingInput | None:
        return self._inputs.get(ciphertext)

    def _consume_inputs(self, ciphertexts: tuple[str, ...], sealed: dict[str, _SealedValue]) -> None:
        for ciphertext in ciphertexts:
            del self._inputs[ciphertext]
        self._values.update(sealed)

    def _grant(self, handle_id: str, identity: str) -> None:
        self._access.setdefault(handle_id, set()).add(identity)

    def _has_access(self, handle_id: str, identity: str) -> bool:
        return identity in self._access.get(handle_id, set())

    def _mark_public(self, handle_id: str) -> None:
        self._public.add(handle_id)

    def _is_public(self, handle_id: str) -> bool:
        return handle_id in self._public


class PostgresConfidentialCompute(InMemoryConfidentialCompute):
    """Same backend with its value, input and access tables kept in PostgreSQL.

    Only the disclosure queue lives in the process; unanswered requests are
    re-issued by ``VaultWarsService.resume_disclosures`` after a restart.
    """

    def __init__(self, server_salt: str, database_url: str) -> None:
        super().__init__(server_salt=server_salt)
        self.database_url = database_url

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    def _put_value(self, handle_id: str, sealed: _SealedValue) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO sealed_values (handle_id, kind, value) VALUES (%s, %s, %s)",
                    (handle_id, sealed.kind, _canonical(sealed.value)),
                )
            conn.commit()

    def _get_value(self, handle_id: str) -> _SealedValue | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT kind, value FROM sealed_values WHERE handle_id = %s", (handle_id,))
                row = cur.fetchone()
        if row is None:
            return None
        kind, raw = row
        return _SealedValue(kind=kind, value=_decode(kind, raw))

    def _put_inputs(self, inputs: dict[str, _PendingInput]) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                for ciphertext, item in inputs.items():
                    cur.execute(
                        "INSERT INTO sealed_inputs (ciphertext, value, sender, batch) VALUES (%s, %s, %s, %s::jsonb)",
                        (ciphertext, item.value, item.sender, json.dumps(list(item.batch))),
                    )
            conn.commit()

    def _get_input(self, ciphertext: str) -> _PendingInput | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT value, sender, batch FROM sealed_inputs WHERE ciphertext = %s", (ciphertext,))
                row = cur.fetchone()
        if row is None:
            return None
        value, sender, batch = row
        items = batch if isinstance(batch, list) else json.loads(batch)
        return _PendingInput(value=int(value), sender=sender, batch=tuple(items))

    def _consume_inputs(self, ciphertexts: tuple[str, ...], sealed: dict[str, _SealedValue]) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM sealed_inputs WHERE ciphertext = ANY(%s) RETURNING ciphertext",
                    (list(ciphertexts),),
                )
                if len(cur.fetchall()) != len(ciphertexts):
                    conn.rollback()
                    raise ProofVerificationFailed("VaultWars: Invalid input proof")
                for handle_id, item in sealed.items():
                    cur.execute(
                        "INSERT INTO sealed_values (handle_id, kind, value) VALUES (%s, %s, %s)",
                        (handle_id, item.kind, _canonical(item.value)),
                    )
            conn.commit()

    def _grant(self, handle_id: str, identity: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO sealed_access (handle_id, identity) VALUES (%s, %s) ON CONFLICT DO NOTHING",
                    (handle_id, identity),
                )
            conn.commit()

    def _has_access(self, handle_id: str, identity: str) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT 1 FROM sealed_access WHERE handle_id = %s AND identity = %s",
                    (handle_id, identity),
                )
                row = cur.fetchone()
        return row is not None

    def _mark_public(self, handle_id: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("UPDATE sealed_values SET public = TRUE WHERE handle_id = %s", (handle_id,))
            conn.commit()

    def _is_public(self, handle_id: str) -> bool:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT public FROM sealed_values WHERE handle_id = %s", (handle_id,))
                row = cur.fetchone()
        return row is not None and bool(row[0])


def _as_uint8(value: int) -> int:
    number = int(value)
    if not 0 <= number <= 255:
        raise ValueError(f"Symbol out of 8-bit range: {value}")
    return number


def _require_same_kind(left: SealedHandle, right: SealedHandle) -> None:
    if left.kind != right.kind:
        raise TypeError(f"Mismatched sealed kinds: {left.kind} and {right.kind}")


def _canonical(cleartext: Any) -> str:
    if isinstance(cleartext, bool):
        return "1" if cleartext else "0"
    return str(cleartext)


def _decode(kind: str, raw: str) -> Any:
    if kind == EUINT8:
        return int(raw)
    if kind == EBOOL:
        return raw == "1"
    return raw


def create_compute(server_salt: str, database_url: str | None) -> InMemoryConfidentialCompute:
    if database_url:
        return PostgresConfidentialCompute(server_salt=server_salt, database_url=database_url)
    return InMemoryConfidentialCompute(server_salt=server_salt)
