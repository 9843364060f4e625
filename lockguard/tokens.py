"""Ownership token generation."""

from __future__ import annotations

import secrets

# 24 random bytes -> 48 hex chars; collision odds among live holders are negligible.
TOKEN_BYTES = 24


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """Return a fresh fixed-length hex token proving ownership of one attempt."""
    return secrets.token_hex(nbytes)
