"""Hashing helpers."""

from __future__ import annotations

from cryptography.hazmat.primitives import hashes


def sha256(*parts: bytes) -> bytes:
    """SHA-256 over the concatenation of ``parts``."""
    digest = hashes.Hash(hashes.SHA256())
    for part in parts:
        digest.update(part)
    return digest.finalize()
