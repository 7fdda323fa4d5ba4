"""Token and proof helpers for the backend."""

from __future__ import annotations

import hashlib
import hmac
import secrets


TOKEN_BYTES = 24


def generate_token() -> str:
    """Generate a URL-safe bearer token for a player."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str, server_salt: str) -> str:
    """Create deterministic token hash via sha256(token + server_salt)."""
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def sign_proof(secret: str, *parts: object) -> str:
    """HMAC-SHA256 over the given parts, joined with a unit separator."""
    payload = "\x1f".join(str(part) for part in parts).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_proof(proof: str, secret: str, *parts: object) -> bool:
    return hmac.compare_digest(sign_proof(secret, *parts), proof)
