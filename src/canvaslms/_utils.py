"""
Utility helpers for the canvaslms SDK.

This module provides internal helpers shared by the middleware modules.
These functions are not part of the public API and may change without notice.
"""

from __future__ import annotations

import hashlib
import os
import random
import socket

import requests


class Jitter:
    """
    Downward-only jitter for spreading retry delays.

    Uses a per-process seeded RNG to ensure:
    - Same process = deterministic sequence (reproducible for debugging)
    - Different processes = different sequences (desynchronization)

    The jitter factor determines how far below the original value a jittered
    value may fall. A factor of 0.25 means values are multiplied by a random
    number in the range [0.75, 1.0], so a jittered delay never exceeds the
    computed one.

    Example:
        >>> jitter = Jitter(factor=0.25)
        >>> jittered = jitter.apply(1000.0)  # Returns ~750-1000
        >>> jittered = 1000.0 * jitter  # Same effect

    Args:
        factor: Jitter factor (default: 0.25).
        rng: Optional RNG for testing. If None, creates a per-process seeded RNG.
    """

    def __init__(self, factor: float = 0.25, rng: random.Random | None = None):
        assert factor >= 0, "factor must be non-negative"
        assert factor < 1, "factor must be less than 1"

        self.factor = factor
        self._rng = rng or self._create_process_local_rng()

    @staticmethod
    def _create_process_local_rng() -> random.Random:
        """Create a deterministic RNG seeded with hostname and PID."""
        seed = hash((socket.gethostname(), os.getpid()))
        return random.Random(seed)

    def next(self) -> float:
        """Return a random multiplier in [1-factor, 1]."""
        return self._rng.uniform(1.0 - self.factor, 1.0)

    def apply(self, value: float) -> float:
        """Multiply value by a jittered factor in [1-factor, 1]."""
        return value * self.next()

    def __mul__(self, other: float) -> float:
        return self.apply(other)

    def __rmul__(self, other: float) -> float:
        return self.apply(other)


# Timeout and connection failures retried when `retry_on_timeout` is on.
# The built-ins cover custom transports that don't use requests.
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    requests.Timeout,
    requests.ConnectionError,
    TimeoutError,
    ConnectionError,
)


def fingerprint(secret: str | None) -> str | None:
    """
    Return a short, non-reversible fingerprint of a credential.

    Example:
        >>> len(fingerprint("my-api-key"))
        8
        >>> fingerprint(None) is None
        True
    """
    if not secret:
        return None
    return hashlib.sha1(secret.encode("utf-8")).hexdigest()[:8]


# =============================================================================
# Canvas response headers
# =============================================================================

RATE_LIMIT_REMAINING_HEADER = "X-Rate-Limit-Remaining"
REQUEST_COST_HEADER = "X-Request-Cost"


def header_float(response: requests.Response, name: str) -> float | None:
    """Read a numeric response header, returning None when absent or malformed."""
    raw = response.headers.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def is_rate_limit_response(response: requests.Response) -> bool:
    """
    Determine if Canvas rejected a request because its rate-limit bucket is empty.

    Canvas signals throttling with HTTP 403 (not 429), either with an
    X-Rate-Limit-Remaining of zero or with "Rate Limit Exceeded" in the body.
    """
    if response.status_code != 403:
        return False
    remaining = header_float(response, RATE_LIMIT_REMAINING_HEADER)
    if remaining is not None and remaining <= 0:
        return True
    return "Rate Limit Exceeded" in (response.text or "")
