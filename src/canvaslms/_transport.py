"""
Transport boundary of the request pipeline.

The pipeline wraps a single send primitive, `send(HttpRequest) -> requests.Response`,
that performs the actual network I/O. Middleware never bypass it.

Available implementations:
    - RequestsTransport: Sends requests with the `requests` library. Default.

Example:
    >>> from canvaslms._transport import HttpRequest, RequestsTransport
    >>> transport = RequestsTransport(timeout=10)
    >>> response = transport.send(HttpRequest("GET", "https://school.instructure.com/api/v1/courses"))
"""

from __future__ import annotations

import json as jsonlib
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, override
from urllib.parse import urlencode, urlparse

import requests

# A function that sends a request and returns the raw response
SendFunction = Callable[["HttpRequest"], requests.Response]


@dataclass(frozen=True)
class HttpRequest:
    """
    An outgoing HTTP request as seen by the middleware chain.

    Instances are immutable; middleware that need to alter a request
    (e.g. to attach a refreshed token) create a modified copy.

    Attributes:
        method: HTTP verb, upper-case.
        url: Absolute URL.
        headers: Request headers.
        params: Query string parameters.
        data: Form fields or raw body.
        json: JSON-serializable body.
        files: Multipart files, passed through to requests.
        timeout: Transport timeout in seconds. None uses the transport default.
        options: Per-request pipeline options, e.g. {"rate_limit_bucket": "uploads"}.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Any = None
    data: Any = None
    json: Any = None
    files: Any = None
    timeout: float | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def host(self) -> str | None:
        return urlparse(self.url).hostname

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    def with_header(self, name: str, value: str) -> HttpRequest:
        """Return a copy with `name` set to `value`, replacing any existing casing of it."""
        lowered = name.lower()
        headers = {k: v for k, v in self.headers.items() if k.lower() != lowered}
        headers[name] = value
        return replace(self, headers=headers)

    def body_text(self) -> str | None:
        """
        Render the request body as text, for logging only.

        JSON bodies are serialized, form fields are url-encoded and raw bytes
        are decoded as UTF-8. Multipart files are never read.
        """
        if self.json is not None:
            return jsonlib.dumps(self.json)
        if self.data is None:
            return None
        if isinstance(self.data, (bytes, bytearray)):
            return bytes(self.data).decode("utf-8", errors="replace")
        if isinstance(self.data, str):
            return self.data
        if isinstance(self.data, (Mapping, list, tuple)):
            return urlencode(self.data, doseq=True)
        return str(self.data)


class HttpTransport(ABC):
    """
    Abstract base class for transports.

    Implementations perform the network I/O for a fully prepared request and
    return the raw response regardless of its status code. Transport-level
    failures (DNS, connection refused, timeouts) are raised as exceptions.

    Example:
        >>> class RecordingTransport(HttpTransport):
        ...     def send(self, request):
        ...         self.last = request
        ...         return canned_response
    """

    @abstractmethod
    def send(self, request: HttpRequest) -> requests.Response:
        """
        Send a request.

        Args:
            request: The request to send.

        Returns:
            The HTTP response, whatever its status code.

        Raises:
            requests.RequestException: On transport failures.
        """
        pass


class RequestsTransport(HttpTransport):
    """
    Transport backed by the `requests` library.

    Args:
        session: Optional session for connection pooling. If None, each request
            goes through the module-level `requests.request`.
        timeout: Default timeout in seconds for requests that don't set one.
    """

    def __init__(self, session: requests.Session | None = None, timeout: float = 30):
        assert timeout > 0, "timeout must be greater than 0."

        self.session = session
        self.timeout = timeout

    @override
    def send(self, request: HttpRequest) -> requests.Response:
        requester = self.session.request if self.session is not None else requests.request
        return requester(
            method=request.method,
            url=request.url,
            headers=dict(request.headers),
            params=request.params,
            data=request.data,
            json=request.json,
            files=request.files,
            timeout=request.timeout if request.timeout is not None else self.timeout,
        )
