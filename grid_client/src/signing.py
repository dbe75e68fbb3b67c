"""
Request signing for the EnergyGrid query endpoint.

Every request carries a ``timestamp`` header (epoch milliseconds) and a
``signature`` header equal to ``md5(path + token + timestamp)`` in lowercase
hex. The endpoint recomputes the digest and answers 401 on mismatch, so the
concatenation order is part of the wire contract. A fresh timestamp, and
therefore a fresh signature, is produced for every attempt.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import hashlib
import time


def create_signature(path: str, token: str, timestamp: str) -> str:
    """Return ``md5(path + token + timestamp)`` as 32 lowercase hex chars.

    Args:
        path: Endpoint path, e.g. ``/device/real/query``.
        token: Shared secret.
        timestamp: Timestamp string sent alongside the signature.
    """
    payload = f"{path}{token}{timestamp}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def make_timestamp() -> str:
    """Current epoch time in milliseconds, as a string."""
    return str(time.time_ns() // 1_000_000)


def signed_headers(path: str, token: str, timestamp: str) -> dict[str, str]:
    """Build the request headers for one signed attempt."""
    return {
        "Content-Type": "application/json",
        "timestamp": timestamp,
        "signature": create_signature(path, token, timestamp),
    }
