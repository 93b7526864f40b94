"""
Rate limiting components for the canvaslms SDK.

Canvas throttles API usage with a leaky bucket per access token: each request
is charged a cost, the bucket drains back towards full at a fixed rate, and
every response reports what is left in the X-Rate-Limit-Remaining header
(plus the cost of the request in X-Request-Cost). When the bucket runs dry
Canvas answers HTTP 403 "Rate Limit Exceeded".

This module mirrors that accounting locally so the client slows down before
Canvas starts rejecting requests:

    - Bucket: Per-key leaky-bucket state with lazy refill.
    - BucketRegistry: Injectable, thread-safe table of buckets keyed by
      credential fingerprint + host.
    - RateLimitMiddleware: Pre-charges the bucket before each request, waits
      or fails fast when it runs low, and reconciles with the headers Canvas
      returns.

Example:
    >>> from canvaslms._rate_limit import BucketRegistry, RateLimitMiddleware
    >>> registry = BucketRegistry()
    >>> middleware = RateLimitMiddleware(auth=auth, registry=registry)
    >>> send = middleware.wrap(transport.send)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, override

import requests

from canvaslms._exceptions import CanvasApiError
from canvaslms._middleware import Middleware
from canvaslms._retry import RetryableError
from canvaslms._utils import (
    RATE_LIMIT_REMAINING_HEADER,
    REQUEST_COST_HEADER,
    header_float,
    is_rate_limit_response,
)

if TYPE_CHECKING:
    from canvaslms._auth import AuthProvider
    from canvaslms._config import RateLimitConfig
    from canvaslms._transport import HttpRequest, SendFunction

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_KEY = "default"


# =============================================================================
# Exceptions
# =============================================================================


class RateLimitError(CanvasApiError):
    """
    Base exception for rate limiting errors.

    Attributes:
        bucket_key: Key of the bucket involved, if known.
    """

    def __init__(
        self,
        message: str,
        bucket_key: str | None = None,
        status_code: int | None = None,
        response: requests.Response | None = None,
    ):
        super().__init__(message, status_code=status_code, response=response)
        self.bucket_key = bucket_key


class ClientSideRateLimitError(RateLimitError):
    """
    Base exception for client-side rate limiting errors.

    Raised when the local bucket refuses to send a request, as opposed to
    Canvas rejecting it (ServerSideRateLimitError). These are not retried:
    the client already decided that waiting is not an option.

    Example:
        >>> try:
        ...     client.get("courses")
        ... except ClientSideRateLimitError as e:
        ...     print(f"Self-throttled on bucket {e.bucket_key}: {e}")
    """

    pass


class RateLimitWouldBeExceededError(ClientSideRateLimitError):
    """
    Raised in fail-fast mode (wait_on_limit=False) when the bucket is too low.

    Attributes:
        required_wait: Seconds the bucket needs to drain back above min_remaining.
    """

    def __init__(self, bucket_key: str, required_wait: float):
        self.required_wait = required_wait
        super().__init__(
            f"Rate limit would be exceeded on bucket '{bucket_key}': "
            f"{required_wait:.2f}s wait required and wait_on_limit is disabled",
            bucket_key=bucket_key,
        )


class TokenAcquisitionTimeoutError(ClientSideRateLimitError):
    """
    Raised when the wait needed to refill the bucket exceeds max_wait_time.

    The request fails immediately; the limiter never sleeps for a wait it
    already knows is too long.

    Attributes:
        required_wait: Seconds the bucket needs to drain back above min_remaining.
        max_wait_time: The configured maximum wait time.

    Example:
        >>> try:
        ...     client.get("courses")
        ... except TokenAcquisitionTimeoutError as e:
        ...     print(f"Would need {e.required_wait:.1f}s, limit is {e.max_wait_time:.1f}s")
    """

    def __init__(self, bucket_key: str, required_wait: float, max_wait_time: float):
        self.required_wait = required_wait
        self.max_wait_time = max_wait_time
        super().__init__(
            f"Rate limit timeout on bucket '{bucket_key}': "
            f"required wait {required_wait:.2f}s exceeds max_wait_time={max_wait_time:.2f}s",
            bucket_key=bucket_key,
        )


class ServerSideRateLimitError(RateLimitError, RetryableError):
    """
    Raised when Canvas rejects a request with 403 "Rate Limit Exceeded".

    Extends RetryableError so it's automatically retried by the retry
    middleware when it sits outside the rate-limit middleware (the default
    order), after the bucket has been synced to the reported remaining value.

    Attributes:
        response: The original HTTP 403 response.

    Example:
        >>> try:
        ...     client.get("courses")
        ... except ServerSideRateLimitError as e:
        ...     print(e.response.headers.get("X-Rate-Limit-Remaining"))
    """

    def __init__(self, response: requests.Response, bucket_key: str | None = None):
        super().__init__(
            f"Server rate limit exceeded (HTTP {response.status_code})",
            bucket_key=bucket_key,
            status_code=response.status_code,
            response=response,
        )


# =============================================================================
# Bucket State
# =============================================================================


@dataclass
class Bucket:
    """
    Leaky-bucket state for one bucket key.

    `remaining` starts at `capacity`, is consumed by requests and is restored
    lazily at `leak_rate` units per second. Every method keeps
    0 <= remaining <= capacity. Callers must hold `lock` while mutating.

    Attributes:
        key: Bucket key.
        capacity: Maximum remaining value.
        leak_rate: Units restored per second.
        remaining: Current value.
        last_update: Clock reading of the last adjustment.
    """

    key: str
    capacity: float
    leak_rate: float
    remaining: float
    last_update: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def refill(self, now: float) -> float:
        """Apply the leak since last_update and return the new remaining value."""
        elapsed = max(0.0, now - self.last_update)
        self.remaining = min(self.capacity, self.remaining + self.leak_rate * elapsed)
        self.last_update = now
        return self.remaining

    def charge(self, cost: float, now: float) -> float:
        self.refill(now)
        self.remaining = max(0.0, self.remaining - cost)
        return self.remaining

    def refund(self, amount: float, now: float) -> float:
        self.refill(now)
        self.remaining = min(self.capacity, self.remaining + amount)
        return self.remaining

    def sync(self, reported_remaining: float, now: float) -> float:
        """Overwrite remaining with the value Canvas reported."""
        self.remaining = min(self.capacity, max(0.0, reported_remaining))
        self.last_update = now
        return self.remaining

    def time_until(self, target: float) -> float:
        """Seconds of leak needed for remaining to reach `target`."""
        if self.remaining >= target:
            return 0.0
        return (target - self.remaining) / self.leak_rate


class BucketRegistry:
    """
    Thread-safe table of buckets keyed by bucket key.

    A registry is an ordinary object: give each client its own registry to
    isolate them, or pass one registry to several clients so they share
    buckets.

    Args:
        clock: Monotonic clock in seconds. Injectable for tests.

    Example:
        >>> registry = BucketRegistry()
        >>> bucket = registry.get("school.instructure.com_4f2c9a1b", capacity=3000, leak_rate=50)
        >>> registry.reset()
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._buckets: dict[str, Bucket] = {}
        self._lock = threading.Lock()

    def get(self, key: str, capacity: float, leak_rate: float) -> Bucket:
        """Return the bucket for `key`, creating a full one on first use."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = Bucket(
                    key=key,
                    capacity=capacity,
                    leak_rate=leak_rate,
                    remaining=capacity,
                    last_update=self.clock(),
                )
                self._buckets[key] = bucket
            return bucket

    def reset(self, key: str | None = None) -> None:
        """Forget one bucket, or all of them when `key` is None."""
        with self._lock:
            if key is None:
                self._buckets.clear()
            else:
                self._buckets.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._buckets)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._buckets


# =============================================================================
# Middleware
# =============================================================================


class RateLimitMiddleware(Middleware):
    """
    Middleware applying Canvas's cost-based rate limiting on the client side.

    Before sending, the bucket is refilled and checked against min_remaining.
    A low bucket either waits for the leak to restore enough capacity or
    fails fast, then the estimated cost (initial_cost) is pre-charged so that
    concurrent requests see each other. After the response arrives the bucket
    is reconciled with the headers Canvas returned:

        - X-Rate-Limit-Remaining present: the bucket is set to that value.
        - Otherwise, X-Request-Cost present: the difference from the estimate
          is refunded (or charged, if the request cost more).

    A transport error refunds the estimate. A 403 "Rate Limit Exceeded"
    raises ServerSideRateLimitError.

    Bucket keys:
        - The `rate_limit_bucket` request option, when set, always wins.
        - Otherwise "<host>_<credential fingerprint>", so different tokens
          and different hosts never share a bucket.
        - "default" when the host or the credential is unknown.

    Args:
        auth: Auth provider whose credential fingerprint scopes buckets. Optional.
        config: Rate limit settings. If None, uses CANVAS.config.rate_limit.
        registry: Bucket registry. If None, a private registry is created.

    Raises:
        RateLimitWouldBeExceededError: Bucket too low and wait_on_limit is False.
        TokenAcquisitionTimeoutError: Required wait exceeds max_wait_time.
        ServerSideRateLimitError: Canvas rejected the request as rate limited.
    """

    name = "rate-limit"

    def __init__(
        self,
        auth: AuthProvider | None = None,
        config: RateLimitConfig | None = None,
        registry: BucketRegistry | None = None,
    ):
        if config is None:
            from canvaslms._config import CANVAS

            config = CANVAS.config.rate_limit

        self.auth = auth
        self.config = config
        self.registry = registry if registry is not None else BucketRegistry()

    def bucket_key_for(self, request: HttpRequest) -> str:
        override_key = request.option("rate_limit_bucket")
        if override_key:
            return str(override_key)

        host = request.host
        credential = self.auth.fingerprint() if self.auth is not None else None
        if not host or not credential:
            return DEFAULT_BUCKET_KEY
        return f"{host}_{credential}"

    def get_bucket(self, key: str) -> Bucket:
        return self.registry.get(key, capacity=self.config.bucket_size, leak_rate=self.config.leak_rate)

    def reset_buckets(self, key: str | None = None) -> None:
        self.registry.reset(key)

    def _acquire(self, bucket: Bucket) -> None:
        """Wait (or fail) until the bucket is above min_remaining, then pre-charge it."""
        with bucket.lock:
            bucket.refill(self.registry.clock())
            required_wait = bucket.time_until(self.config.min_remaining)
            if required_wait <= 0:
                bucket.charge(self.config.initial_cost, self.registry.clock())
                return
            remaining = bucket.remaining

        if not self.config.wait_on_limit:
            raise RateLimitWouldBeExceededError(bucket.key, required_wait)

        if required_wait > self.config.max_wait_time:
            raise TokenAcquisitionTimeoutError(bucket.key, required_wait, self.config.max_wait_time)

        logger.warning(
            f"Rate limit | Bucket '{bucket.key}' low "
            f"({remaining:.0f} < {self.config.min_remaining:.0f}). "
            f"Waiting {required_wait:.2f}s..."
        )
        # Sleep outside the lock to allow other threads to proceed
        time.sleep(required_wait)

        with bucket.lock:
            bucket.charge(self.config.initial_cost, self.registry.clock())

    def _reconcile(self, bucket: Bucket, response: requests.Response) -> None:
        remaining = header_float(response, RATE_LIMIT_REMAINING_HEADER)
        cost = header_float(response, REQUEST_COST_HEADER)

        with bucket.lock:
            now = self.registry.clock()
            if remaining is not None:
                bucket.sync(remaining, now)
            elif cost is not None:
                difference = self.config.initial_cost - cost
                if difference > 0:
                    bucket.refund(difference, now)
                elif difference < 0:
                    bucket.charge(-difference, now)

        logger.debug(
            f"Rate limit | Bucket '{bucket.key}' reconciled: remaining={bucket.remaining:.1f} "
            f"(reported={remaining}, cost={cost})"
        )

    @override
    def wrap(self, next_send: SendFunction) -> SendFunction:
        def send(request: HttpRequest) -> requests.Response:
            if not self.config.enabled:
                return next_send(request)

            bucket = self.get_bucket(self.bucket_key_for(request))
            self._acquire(bucket)

            try:
                response = next_send(request)
            except RateLimitError:
                raise
            except Exception:
                with bucket.lock:
                    bucket.refund(self.config.initial_cost, self.registry.clock())
                raise

            self._reconcile(bucket, response)

            if is_rate_limit_response(response):
                logger.warning(
                    f"Rate limit | Canvas rejected {request.method} {request.url} "
                    f"as rate limited (bucket '{bucket.key}')"
                )
                raise ServerSideRateLimitError(response, bucket_key=bucket.key)

            return response

        return send
