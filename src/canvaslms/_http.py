"""
HTTP client for the Canvas REST API.

HttpClient resolves API paths against the configured Canvas instance,
attaches credentials and sends every request through a middleware pipeline
wrapped around a transport. With no explicit transport or middleware, the
default pipeline is installed, outermost first:

    retry -> rate-limit -> oauth2_refresh (OAuth2 mode only) -> logging (logger given only)

Example (recommended - global configuration):
    >>> from canvaslms import CANVAS, HttpClient
    >>> CANVAS.configure(
    ...     auth={"api_key": "1~abc"},
    ...     api={"base_url": "https://school.instructure.com"},
    ... )
    >>> client = HttpClient()
    >>> course = client.get("courses/42").json()

Example (pagination):
    >>> page = client.get_paginated("courses", params={"per_page": 100})
    >>> courses = page.fetch_all_pages()

Example (custom pipeline):
    >>> client = HttpClient(middleware=[RetryMiddleware(RetryConfig(max_attempts=5))])
    >>> client.add_middleware(LoggingMiddleware(logging.getLogger("canvas.http")))
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import requests

from canvaslms._auth import AuthProvider, OAuth2RefreshMiddleware, create_auth_provider
from canvaslms._exceptions import CanvasApiError, MissingBaseUrlError
from canvaslms._logging import LoggingMiddleware
from canvaslms._middleware import Middleware, MiddlewarePipeline
from canvaslms._rate_limit import BucketRegistry, RateLimitMiddleware
from canvaslms._retry import RetryMiddleware
from canvaslms._transport import HttpRequest, HttpTransport, RequestsTransport
from canvaslms.pagination import PaginatedResponse

if TYPE_CHECKING:
    from canvaslms._config import CanvasConfig

logger = logging.getLogger(__name__)

# Paths under these prefixes are joined to the base URL without the API version prefix
_UNVERSIONED_PREFIXES = ("/api/", "/login/oauth2/")
_LOCAL_HOSTS = ("localhost", "127.0.0.1")


class HttpClient:
    """
    Canvas API client with a composable middleware pipeline.

    URL resolution:
        - Absolute URLs are used as is (e.g. file-upload hosts returned by Canvas).
        - "/api/..." and "/login/oauth2/..." paths are joined to base_url.
        - Any other path gets "/api/<api_version>/" in front: "courses" becomes
          "<base_url>/api/v1/courses".

    Non-2xx responses that survive the pipeline raise CanvasApiError with the
    status code, the raw response and the parsed Canvas error messages.

    Args:
        transport: Transport performing the network I/O. Supplying one
            suppresses the default middleware.
        logger: Logger for the logging middleware. Only used by the default pipeline.
        middleware: Explicit middleware list, outermost first. Suppresses the defaults.
        config: Configuration snapshot. If None, uses CANVAS.config.
        auth: Auth provider. If None, created from config.auth.
        bucket_registry: Rate-limit buckets. Pass the same registry to several
            clients to share buckets. If None, the client gets its own.
    """

    def __init__(
        self,
        transport: HttpTransport | None = None,
        logger: logging.Logger | None = None,
        middleware: Iterable[Middleware] | None = None,
        *,
        config: CanvasConfig | None = None,
        auth: AuthProvider | None = None,
        bucket_registry: BucketRegistry | None = None,
    ):
        if config is None:
            from canvaslms._config import CANVAS

            config = CANVAS.config

        self.config = config
        self.auth = auth if auth is not None else create_auth_provider(config.auth, config.api)
        self.bucket_registry = bucket_registry if bucket_registry is not None else BucketRegistry()

        use_defaults = transport is None and middleware is None
        self.transport = transport if transport is not None else RequestsTransport(timeout=config.api.timeout)
        self.pipeline = MiddlewarePipeline(
            self._default_middleware(logger) if use_defaults else (middleware or ())
        )

    def _default_middleware(self, http_logger: logging.Logger | None) -> list[Middleware]:
        defaults: list[Middleware] = [
            RetryMiddleware(self.config.retry),
            RateLimitMiddleware(self.auth, self.config.rate_limit, self.bucket_registry),
        ]
        if self.auth.is_oauth:
            defaults.append(OAuth2RefreshMiddleware(self.auth, self.config.oauth2))
        if http_logger is not None:
            defaults.append(LoggingMiddleware(http_logger, self.config.logging))
        return defaults

    # -------------------------------------------------------------------------
    # Middleware management
    # -------------------------------------------------------------------------

    def add_middleware(self, middleware: Middleware, *, before: str | None = None, after: str | None = None) -> HttpClient:
        self.pipeline.add(middleware, before=before, after=after)
        return self

    def remove_middleware(self, name: str) -> Middleware | None:
        return self.pipeline.remove(name)

    def get_middleware(self, name: str) -> Middleware | None:
        return self.pipeline.get(name)

    # -------------------------------------------------------------------------
    # Request building
    # -------------------------------------------------------------------------

    def resolve_url(self, url: str) -> str:
        """
        Turn an API path into an absolute URL.

        Raises:
            MissingBaseUrlError: If `url` is relative and no base_url is configured.
            ValueError: If an absolute URL uses plain HTTP outside of localhost.
        """
        parsed = urlparse(url)
        if parsed.scheme and parsed.netloc:
            if parsed.scheme != "https" and parsed.hostname not in _LOCAL_HOSTS:
                raise ValueError(f"Refusing to send credentials over plain HTTP: {url}")
            return url

        base_url = self.config.api.base_url
        if not base_url:
            raise MissingBaseUrlError()
        base_url = base_url.rstrip("/")

        path = url if url.startswith("/") else f"/{url}"
        if path.startswith(_UNVERSIONED_PREFIXES):
            return f"{base_url}{path}"
        return f"{base_url}/api/{self.config.api.api_version}{path}"

    def build_request(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        data: Any = None,
        json: Any = None,
        files: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        skip_auth: bool = False,
        as_user_id: int | None = None,
        rate_limit_bucket: str | None = None,
    ) -> HttpRequest:
        request_headers = {"Accept": "application/json"}
        if not skip_auth:
            request_headers.update(self.auth.get_auth_headers())
        request_headers.update(headers or {})

        masquerade_id = as_user_id if as_user_id is not None else self.config.api.as_user_id
        if masquerade_id is not None:
            params = _with_param(params, "as_user_id", masquerade_id)

        options: dict[str, Any] = {}
        if rate_limit_bucket:
            options["rate_limit_bucket"] = rate_limit_bucket

        return HttpRequest(
            method=method.upper(),
            url=self.resolve_url(url),
            headers=request_headers,
            params=params,
            data=data,
            json=json,
            files=files,
            timeout=timeout,
            options=options,
        )

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send(self, request: HttpRequest) -> requests.Response:
        """
        Send a prepared request through the pipeline.

        Returns:
            The final response (2xx only).

        Raises:
            CanvasApiError: For non-2xx responses and transport failures.
                Rate limiting, retry exhaustion and auth failures raise their
                dedicated subclasses.
        """
        send = self.pipeline.build(self.transport.send)
        try:
            response = send(request)
        except requests.RequestException as e:
            logger.error(f"❌ {request.method} {request.url} failed: {e}")
            raise CanvasApiError(
                f"{request.method} {request.url} failed: {e}",
                response=e.response,
                status_code=e.response.status_code if e.response is not None else None,
            ) from e

        if not 200 <= response.status_code < 300:
            raise CanvasApiError.from_response(response)
        return response

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """
        Send a request to the Canvas API.

        Args:
            method: HTTP verb.
            url: API path (e.g. "courses/42") or absolute URL.
            **kwargs: params, data, json, files, headers, timeout, skip_auth,
                as_user_id, rate_limit_bucket.
        """
        return self.send(self.build_request(method, url, **kwargs))

    def get(self, url: str, params: Any = None, **kwargs: Any) -> requests.Response:
        return self.request("GET", url, params=params, **kwargs)

    def post(self, url: str, data: Any = None, **kwargs: Any) -> requests.Response:
        return self.request("POST", url, data=data, **kwargs)

    def put(self, url: str, data: Any = None, **kwargs: Any) -> requests.Response:
        return self.request("PUT", url, data=data, **kwargs)

    def patch(self, url: str, data: Any = None, **kwargs: Any) -> requests.Response:
        return self.request("PATCH", url, data=data, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> requests.Response:
        return self.request("DELETE", url, **kwargs)

    def get_paginated(self, url: str, params: Any = None, **kwargs: Any) -> PaginatedResponse:
        """
        GET the first page of a collection.

        Follow-up pages are requested with the same keyword options (e.g.
        `as_user_id`, `rate_limit_bucket`).

        Example:
            >>> page = client.get_paginated("accounts/1/courses", params={"per_page": 50})
            >>> page.get_total_pages()
            12
        """
        response = self.get(url, params=params, **kwargs)

        def fetch(endpoint: str, page_params: Mapping[str, Any]) -> requests.Response:
            return self.get(endpoint, params=dict(page_params), **kwargs)

        return PaginatedResponse(response, fetch)


def _with_param(params: Any, name: str, value: Any) -> Any:
    if params is None:
        return {name: value}
    if isinstance(params, Mapping):
        return {**params, name: value}
    return [*list(params), (name, value)]
