"""
Base exceptions for the canvaslms SDK.

Every error surfaced by the request pipeline derives from CanvasApiError,
so callers can catch a single type while still distinguishing server-side
rejections (status_code set) from client-side interventions (rate limiting,
missing credentials, exhausted retries).
"""

from __future__ import annotations

from typing import Any

import requests


class CanvasApiError(Exception):
    """
    Raised when a request to the Canvas API fails.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code of the failed response, if any.
        response: The raw HTTP response, if any.
        errors: Error entries reported by Canvas in the response body.

    Example:
        >>> try:
        ...     client.get("courses/1")
        ... except CanvasApiError as e:
        ...     print(e.status_code, e.errors)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: requests.Response | None = None,
        errors: list[Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response
        self.errors = errors or []

    @classmethod
    def from_response(cls, response: requests.Response) -> CanvasApiError:
        """
        Build an error from a non-2xx response.

        Canvas reports failures either as {"errors": [{"message": ...}]},
        {"errors": {"field": [...]}} or {"message": ...}. All three shapes
        are normalized into the `errors` list.
        """
        errors = _parse_error_entries(response)
        detail = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        method = response.request.method if response.request is not None else "HTTP"
        message = f"{method} {response.url} failed with HTTP {response.status_code}"
        if detail:
            message = f"{message}: {detail}"
        return cls(
            message,
            status_code=response.status_code,
            response=response,
            errors=errors,
        )


class MissingApiKeyError(CanvasApiError):
    """Raised when API key authentication is used without an API key."""

    def __init__(self, message: str = "API key not set. Configure it via CANVAS.configure(auth={'api_key': ...}) or CANVAS_API_KEY."):
        super().__init__(message)


class MissingBaseUrlError(CanvasApiError):
    """Raised when a relative URL is requested without a configured base URL."""

    def __init__(self, message: str = "Base URL not set. Configure it via CANVAS.configure(api={'base_url': ...}) or CANVAS_BASE_URL."):
        super().__init__(message)


def _parse_error_entries(response: requests.Response) -> list[Any]:
    try:
        body = response.json()
    except ValueError:
        return []

    if not isinstance(body, dict):
        return []

    errors = body.get("errors")
    if isinstance(errors, list):
        return errors
    if isinstance(errors, dict):
        entries: list[Any] = []
        for field_name, messages in errors.items():
            for msg in messages if isinstance(messages, list) else [messages]:
                entries.append({"field": field_name, "message": msg.get("message", msg) if isinstance(msg, dict) else msg})
        return entries
    if "message" in body:
        return [{"message": body["message"]}]
    return []
