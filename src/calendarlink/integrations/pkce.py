# PKCE (RFC 7636) helpers and secure random nonces.
# Created: 2026-02-07

from __future__ import annotations

import base64
import hashlib
import secrets


def generate_secure_random(length: int = 32) -> str:
    """Hex string built from ``length`` cryptographically strong random bytes."""
    return secrets.token_bytes(length).hex()


def compute_code_challenge(code_verifier: str) -> str:
    """S256 challenge: BASE64URL(SHA256(code_verifier)) without padding."""
    return (
        base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )


def generate_pkce_pair() -> tuple[str, str]:
    """Return a ``(code_verifier, code_challenge)`` pair."""
    verifier = generate_secure_random(32)
    return verifier, compute_code_challenge(verifier)
