"""
Retry utilities with exponential backoff.

Inspired by Tenacity's Retrying class, this module provides a context manager
for implementing retry logic with configurable backoff and exception handling,
and the RetryMiddleware that applies it to every request in the pipeline.

Example:
    >>> from canvaslms._retry import Retrying
    >>> for attempt in Retrying(max_attempts=3, delay=500):
    ...     with attempt:
    ...         response = transport.send(request)
    ...         return response
"""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from dataclasses import dataclass
from typing import TYPE_CHECKING, override

import requests

from canvaslms._exceptions import CanvasApiError
from canvaslms._middleware import Middleware
from canvaslms._utils import TRANSPORT_ERRORS, Jitter, is_rate_limit_response

if TYPE_CHECKING:
    from canvaslms._config import RetryConfig
    from canvaslms._transport import HttpRequest, SendFunction

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class RetryableError(Exception):
    """
    Base class for exceptions that should trigger automatic retry.

    Exceptions extending this class are automatically retried by the Retrying
    context manager without needing explicit configuration in retry_on_exceptions.

    Example:
        >>> class MyTransientError(RetryableError):
        ...     pass
        >>>
        >>> for attempt in Retrying(max_attempts=3):
        ...     with attempt:
        ...         if some_condition:
        ...             raise MyTransientError("Temporary failure")
        ...         break  # Success
    """

    pass


class RetryableStatusError(RetryableError):
    """
    Raised inside the retry loop when a response carries a retryable status.

    Attributes:
        response: The response that triggered the retry.
    """

    def __init__(self, response: requests.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


class MaxRetriesExceededError(CanvasApiError):
    """
    Raised when all retry attempts are exhausted.

    Wraps the last failure so callers can tell which status or error the
    final attempt ended with.

    Attributes:
        message: Human-readable error message.
        last_exception: The exception from the last attempt.
        attempts: Number of attempts made.
        status_code: Status code of the final response, if the last failure was an HTTP response.
        response: The final response, if any.

    Example:
        >>> try:
        ...     client.get("courses")
        ... except MaxRetriesExceededError as e:
        ...     print(f"Gave up after {e.attempts} attempts: {e.last_exception}")
    """

    def __init__(
        self,
        message: str,
        last_exception: Exception | None = None,
        attempts: int = 0,
    ):
        response = getattr(last_exception, "response", None)
        super().__init__(
            message,
            status_code=response.status_code if response is not None else None,
            response=response,
        )
        self.last_exception = last_exception
        self.attempts = attempts


# =============================================================================
# Retrying
# =============================================================================


@dataclass(frozen=True)
class RetryAttempt:
    """
    Represents a single retry attempt.

    Attributes:
        attempt_number: One-based index of the current attempt (1 = first attempt).
        max_attempts: Total attempts configured.

    Example:
        >>> for attempt_ctx in Retrying(max_attempts=3):
        ...     with attempt_ctx as attempt:
        ...         print(f"Attempt {attempt.attempt_number}/{attempt.max_attempts}")
    """

    attempt_number: int
    max_attempts: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last attempt."""
        return self.attempt_number >= self.max_attempts


class Retrying:
    """
    Context manager for retry with exponential backoff.

    Usage:
        >>> for attempt in Retrying(max_attempts=3, delay=1000):
        ...     with attempt:
        ...         response = send(request)
        ...         return response

    Args:
        max_attempts: Total attempts, including the first one (default: 3).
        delay: Base delay in milliseconds (default: 1000).
        multiplier: Exponential factor (default: 2.0).
            Delay before attempt n+1 = min(max_delay, delay * multiplier ** (n - 1)).
            Example: With delay=1000, delays are 1000ms, 2000ms, 4000ms...
        max_delay: Upper bound for a single delay in milliseconds (default: 16000).
        jitter: Optional Jitter applied to each computed delay.
        retry_on_exceptions: Exception types that trigger retry (default: transport errors).
        skip_retry_on_exceptions: Exception types that never trigger retry.
            Takes precedence over everything else.
        logger_prefix: Prefix for log messages (e.g., the request line).

    Raises:
        MaxRetriesExceededError: When all attempts are exhausted.
            Contains the last exception in the `last_exception` attribute.

    Note:
        - Exceptions extending RetryableError are automatically retried (opt-in via inheritance)
        - The loop naturally exits on success (no exception raised)
        - Exceptions not matching retry conditions are re-raised immediately
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay: float = 1000,
        multiplier: float = 2.0,
        max_delay: float = 16000,
        jitter: Jitter | None = None,
        retry_on_exceptions: tuple[type[Exception], ...] = TRANSPORT_ERRORS,
        skip_retry_on_exceptions: tuple[type[Exception], ...] = (),
        logger_prefix: str = "",
    ):
        assert max_attempts >= 1, f"max_attempts must be >= 1, got {max_attempts}"
        assert delay >= 0, f"delay must be >= 0, got {delay}"
        assert multiplier >= 1, f"multiplier must be >= 1, got {multiplier}"
        assert max_delay >= 0, f"max_delay must be >= 0, got {max_delay}"
        assert retry_on_exceptions is not None, "retry_on_exceptions cannot be None"
        assert skip_retry_on_exceptions is not None, "skip_retry_on_exceptions cannot be None"

        self.max_attempts = max_attempts
        self.delay = delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_on_exceptions = retry_on_exceptions
        self.skip_retry_on_exceptions = skip_retry_on_exceptions
        self.logger_prefix = logger_prefix

        self._last_exception: Exception | None = None

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """Yield retry contexts for each attempt."""
        for attempt in range(1, self.max_attempts + 1):
            yield _RetryContext(self, attempt)

    def compute_delay(self, attempt: int) -> float:
        """
        Compute the delay in milliseconds after a failed `attempt`.

        Args:
            attempt: One-based number of the attempt that just failed.

        Returns:
            min(max_delay, delay * multiplier ** (attempt - 1)), jittered
            downwards when a Jitter is configured.
        """
        base: float = min(self.max_delay, self.delay * (self.multiplier ** (attempt - 1)))
        if self.jitter is not None:
            return self.jitter.apply(base)
        return base

    def _should_retry(self, exception: Exception) -> bool:
        """
        Determine if exception should trigger a retry.

        Logic:
            1. Skip retry for exceptions in skip_retry_on_exceptions
            2. Auto-retry if exception extends RetryableError (opt-in via inheritance)
            3. Retry on configured exception types (Timeout, ConnectionError, etc.)
        """
        if isinstance(exception, self.skip_retry_on_exceptions):
            return False

        if isinstance(exception, RetryableError):
            return True

        return isinstance(exception, self.retry_on_exceptions)

    def _handle_retry(self, exception: Exception, attempt: int) -> None:
        """Log, then sleep before the next attempt."""
        self._last_exception = exception
        delay_ms = self.compute_delay(attempt)

        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.warning(
            f"{prefix}Attempt {attempt}/{self.max_attempts} failed: {exception}"
        )
        logger.warning(
            f"{prefix}Retrying in {delay_ms:.0f}ms..."
        )
        time.sleep(delay_ms / 1000.0)

    def _handle_exhausted(self, exception: Exception, attempt: int) -> None:
        """
        Handle when all attempts are exhausted.

        Raises:
            MaxRetriesExceededError: Always raised with the last exception.
        """
        self._last_exception = exception
        prefix = f"{self.logger_prefix} | " if self.logger_prefix else ""
        logger.error(
            f"{prefix}Max attempts ({self.max_attempts}) exceeded. Last error: {exception}"
        )
        raise MaxRetriesExceededError(
            message=f"Request failed after {attempt} attempt(s). Last error: {exception}",
            last_exception=exception,
            attempts=attempt,
        ) from exception


class _RetryContext:
    """
    Context for a single retry attempt (internal).

    On success (no exception): exits normally
    On retryable exception: suppresses exception, loop continues
    On non-retryable exception: re-raises exception, loop exits
    On exhausted attempts: raises MaxRetriesExceededError
    """

    def __init__(self, retrying: Retrying, attempt: int):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return RetryAttempt(
            attempt_number=self.attempt,
            max_attempts=self._retrying.max_attempts,
        )

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        if exc_val is None:
            return False

        # Only handle Exception, not BaseException (KeyboardInterrupt, etc.)
        if not isinstance(exc_val, Exception):
            return False

        if not self._retrying._should_retry(exc_val):
            return False

        if self.attempt >= self._retrying.max_attempts:
            self._retrying._handle_exhausted(exc_val, self.attempt)
            return False  # Never reached

        self._retrying._handle_retry(exc_val, self.attempt)
        return True


# =============================================================================
# Middleware
# =============================================================================


class RetryMiddleware(Middleware):
    """
    Middleware that retries failed requests with exponential backoff.

    An attempt fails when the response status is in `retry_on_status`, when
    an inner middleware raises a RetryableError (e.g. ServerSideRateLimitError),
    or, with `retry_on_timeout`, when the transport times out or cannot connect.
    Any other exception propagates at once.

    Canvas reports throttling as HTTP 403, the same status it uses for
    permission errors. A 403 is therefore only retried when the response looks
    like a rate-limit rejection; other 403s are returned to the caller.

    Example:
        >>> retry = RetryMiddleware(RetryConfig(max_attempts=5, delay=500))
        >>> send = retry.wrap(transport.send)

    Args:
        config: Retry settings. If None, uses CANVAS.config.retry.
        jitter: Optional Jitter for tests. Created automatically when config.jitter is set.
    """

    name = "retry"

    # Delays are shortened by at most this fraction when jitter is on
    JITTER_FACTOR = 0.25

    def __init__(self, config: RetryConfig | None = None, jitter: Jitter | None = None):
        if config is None:
            from canvaslms._config import CANVAS

            config = CANVAS.config.retry

        self.config = config
        self._jitter = (jitter or Jitter(factor=self.JITTER_FACTOR)) if config.jitter else None

    def compute_delay(self, attempt: int) -> float:
        """Delay in milliseconds after the given failed attempt."""
        return self._new_retrying().compute_delay(attempt)

    def is_retryable_response(self, response: requests.Response) -> bool:
        status = response.status_code
        if status not in self.config.retry_on_status:
            return False
        if status == 403:
            return is_rate_limit_response(response)
        return True

    def _new_retrying(self, logger_prefix: str = "") -> Retrying:
        return Retrying(
            max_attempts=self.config.max_attempts,
            delay=self.config.delay,
            multiplier=self.config.multiplier,
            max_delay=self.config.max_delay,
            jitter=self._jitter,
            retry_on_exceptions=TRANSPORT_ERRORS if self.config.retry_on_timeout else (),
            logger_prefix=logger_prefix,
        )

    @override
    def wrap(self, next_send: SendFunction) -> SendFunction:
        def send(request: HttpRequest) -> requests.Response:
            for attempt in self._new_retrying(logger_prefix=f"{request.method} {request.url}"):
                with attempt:
                    response = next_send(request)
                    if self.is_retryable_response(response):
                        raise RetryableStatusError(response)
                    return response

            raise AssertionError("Retry loop finished without a response.")  # pragma: no cover

        return send
