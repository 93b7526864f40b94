"""
Structured request/response logging for the request pipeline.

LoggingMiddleware writes one event per request and one per response (or
transport error) to a caller-supplied `logging.Logger`. Structured context
is attached to each record as `record.http`, so handlers and formatters can
pick the fields they need:

    >>> import logging
    >>> http_logger = logging.getLogger("myapp.canvas")
    >>> client = HttpClient(logger=http_logger)

Secrets never reach the logs: the Authorization header is always redacted,
and top-level body fields named in `sanitize_fields` are replaced by
"***REDACTED***" in the logged copy (the request itself is never altered).
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, override
from urllib.parse import urlencode

import requests
from ulid import ULID

from canvaslms._middleware import Middleware
from canvaslms._utils import RATE_LIMIT_REMAINING_HEADER, REQUEST_COST_HEADER

if TYPE_CHECKING:
    from canvaslms._config import LoggingConfig
    from canvaslms._transport import HttpRequest, SendFunction

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"
TRUNCATION_MARKER = "... (truncated)"


class LoggingMiddleware(Middleware):
    """
    Middleware that logs requests, responses and transport errors.

    Each request gets a correlation id ("req_<ULID>") shared by all of its
    events. Levels:

        - INFO: "HTTP Request: ..." and 2xx "HTTP Response: ..." events.
        - ERROR: non-2xx responses and "HTTP Error: ..." transport failures.

    Successful responses are only logged when `log_responses` is set; errors
    are always logged. A failing logger never fails the request.

    Args:
        http_logger: Logger receiving the events.
        config: Logging settings. If None, uses CANVAS.config.logging.
        clock: Monotonic clock in seconds, used for elapsed times. Injectable for tests.
    """

    name = "logging"

    def __init__(
        self,
        http_logger: logging.Logger,
        config: LoggingConfig | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        assert http_logger is not None, "A logger is required."
        if config is None:
            from canvaslms._config import CANVAS

            config = CANVAS.config.logging

        self.logger = http_logger
        self.config = config
        self._clock = clock
        self._sanitize_fields = frozenset(config.sanitize_fields)

    # -------------------------------------------------------------------------
    # Sanitizing
    # -------------------------------------------------------------------------

    def sanitize_headers(self, headers: Mapping[str, str]) -> dict[str, str]:
        return {
            name: REDACTED if name.lower() == "authorization" else value
            for name, value in headers.items()
        }

    def sanitize_fields(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Replace top-level keys listed in sanitize_fields (exact, case-sensitive match)."""
        return {
            key: REDACTED if key in self._sanitize_fields else value
            for key, value in data.items()
        }

    def sanitize_body(self, body: str | None) -> str | None:
        """Redact a JSON object body; any other body is returned as is."""
        if not body:
            return body
        try:
            parsed = json.loads(body)
        except ValueError:
            return body
        if not isinstance(parsed, dict):
            return body
        return json.dumps(self.sanitize_fields(parsed))

    def truncate(self, body: str | None) -> tuple[str | None, int | None]:
        """
        Cut bodies longer than max_body_length.

        Returns:
            (body to log, original length) where the length is None when no
            truncation happened.
        """
        if body is None or len(body) <= self.config.max_body_length:
            return body, None
        return body[: self.config.max_body_length] + TRUNCATION_MARKER, len(body)

    def _request_body(self, request: HttpRequest) -> str | None:
        if isinstance(request.json, Mapping):
            return json.dumps(self.sanitize_fields(request.json))
        if isinstance(request.data, Mapping):
            return urlencode(self.sanitize_fields(request.data), doseq=True)
        return self.sanitize_body(request.body_text())

    def _body_context(self, body: str | None) -> dict[str, Any]:
        logged, original_length = self.truncate(body)
        context: dict[str, Any] = {"body": logged}
        if original_length is not None:
            context["body_length"] = original_length
        return context

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _emit(self, level: int, message: str, context: dict[str, Any]) -> None:
        try:
            self.logger.log(level, message, extra={"http": context})
        except Exception:
            logger.debug(f"Logging middleware failed to log '{message}'", exc_info=True)

    def _log_request(self, request_id: str, request: HttpRequest) -> None:
        context: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "url": request.url,
            "params": request.params,
            "headers": self.sanitize_headers(request.headers),
        }
        context.update(self._body_context(self._request_body(request)))
        self._emit(logging.INFO, f"HTTP Request: {request.method} {request.url}", context)

    def _log_response(self, request_id: str, response: requests.Response, elapsed_ms: float) -> None:
        is_success = 200 <= response.status_code < 300
        if is_success and not self.config.log_responses:
            return

        context: dict[str, Any] = {
            "request_id": request_id,
            "status_code": response.status_code,
            "elapsed_ms": round(elapsed_ms, 2),
        }
        remaining = response.headers.get(RATE_LIMIT_REMAINING_HEADER)
        if remaining is not None:
            context["rate_limit_remaining"] = remaining
        cost = response.headers.get(REQUEST_COST_HEADER)
        if cost is not None:
            context["request_cost"] = cost

        if not is_success:
            context.update(self._body_context(self.sanitize_body(response.text)))

        self._emit(
            logging.INFO if is_success else logging.ERROR,
            f"HTTP Response: {response.status_code}",
            context,
        )

    def _log_exception(self, request_id: str, request: HttpRequest, error: Exception, elapsed_ms: float) -> None:
        context = {
            "request_id": request_id,
            "method": request.method,
            "url": request.url,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "elapsed_ms": round(elapsed_ms, 2),
        }
        self._emit(logging.ERROR, f"HTTP Error: {type(error).__name__} - {error}", context)

    @override
    def wrap(self, next_send: SendFunction) -> SendFunction:
        def send(request: HttpRequest) -> requests.Response:
            if not self.config.enabled:
                return next_send(request)

            request_id = f"req_{ULID()}"
            self._log_request(request_id, request)
            started = self._clock()

            try:
                response = next_send(request)
            except Exception as e:
                self._log_exception(request_id, request, e, (self._clock() - started) * 1000)
                raise

            self._log_response(request_id, response, (self._clock() - started) * 1000)
            return response

        return send
