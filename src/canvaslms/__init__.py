"""
Canvas LMS REST API client core for Python.

Provides the resilient request pipeline used to talk to a Canvas LMS
instance (retry with backoff, cost-based rate limiting, OAuth2 token
refresh, redacted logging) and a lazy pagination engine that follows
Canvas's Link headers.

Quick Start:
    >>> from canvaslms import CANVAS, HttpClient
    >>> CANVAS.configure(
    ...     auth={"api_key": "1~abc"},
    ...     api={"base_url": "https://school.instructure.com"},
    ... )
    >>> client = HttpClient()
    >>> courses = client.get_paginated("courses").fetch_all_pages()

Global Configuration:
    >>> from canvaslms import CANVAS
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> attempts = CANVAS.config.retry.max_attempts
    >>>
    >>> # Custom configuration
    >>> CANVAS.configure(
    ...     auth={"mode": "oauth", "oauth_token": "...", "oauth_refresh_token": "...",
    ...           "client_id": "...", "client_secret": "..."},
    ...     retry={"max_attempts": 5},
    ...     rate_limit={"wait_on_limit": False},
    ... )

HTTP Client:
    - HttpClient: Canvas API client with a middleware pipeline.
    - HttpRequest: Immutable outgoing request seen by middleware.
    - HttpTransport: Abstract transport (send primitive).
    - RequestsTransport: Transport backed by requests. Default.

Middleware:
    - Middleware: Abstract base class for middleware.
    - MiddlewarePipeline: Ordered, named middleware collection.
    - RetryMiddleware: Retries with exponential backoff and jitter.
    - RateLimitMiddleware: Client-side leaky-bucket rate limiting.
    - OAuth2RefreshMiddleware: Proactive and reactive OAuth2 token refresh.
    - LoggingMiddleware: Structured, redacted request/response logging.
    - Bucket / BucketRegistry: Rate-limit bucket state.

Pagination:
    - PaginatedResponse: One page with lazy navigation.
    - PaginationResult: Immutable page snapshot.
    - PageCollection: Aggregated pages plus completeness.
    - LinkHeaderParser: RFC 5988 Link header parser.

Authentication:
    - AuthProvider, ApiKeyAuthProvider, OAuth2AuthProvider, create_auth_provider.

Errors:
    - CanvasApiError: Base class for every error raised by requests.
    - MaxRetriesExceededError, RateLimitError (and subclasses), AuthenticationError (and subclasses).
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("canvaslms")

from canvaslms._auth import (
    ApiKeyAuthProvider,
    AuthenticationError,
    AuthProvider,
    MissingOAuthTokenError,
    OAuth2AuthProvider,
    OAuth2RefreshMiddleware,
    OAuthRefreshError,
    TokenInfo,
    create_auth_provider,
)
from canvaslms._config import (
    CANVAS,
    ApiConfig,
    AuthConfig,
    AuthMode,
    CanvasConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    LoggingConfig,
    OAuth2Config,
    RateLimitConfig,
    RetryConfig,
    SdkConfig,
)
from canvaslms._exceptions import (
    CanvasApiError,
    MissingApiKeyError,
    MissingBaseUrlError,
)
from canvaslms._http import HttpClient
from canvaslms._logging import LoggingMiddleware
from canvaslms._middleware import Middleware, MiddlewarePipeline
from canvaslms._rate_limit import (
    Bucket,
    BucketRegistry,
    ClientSideRateLimitError,
    RateLimitError,
    RateLimitMiddleware,
    RateLimitWouldBeExceededError,
    ServerSideRateLimitError,
    TokenAcquisitionTimeoutError,
)
from canvaslms._retry import (
    MaxRetriesExceededError,
    RetryableError,
    RetryMiddleware,
    Retrying,
)
from canvaslms._transport import HttpRequest, HttpTransport, RequestsTransport
from canvaslms.pagination import (
    LinkHeaderParser,
    PageCollection,
    PageCursor,
    PaginatedResponse,
    PaginationResult,
)

__all__ = [
    "__version__",
    # Configuration
    "CANVAS",
    "CanvasConfig",
    "SdkConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    "AuthConfig",
    "AuthMode",
    "ApiConfig",
    "RetryConfig",
    "RateLimitConfig",
    "OAuth2Config",
    "LoggingConfig",
    # Authentication
    "AuthProvider",
    "ApiKeyAuthProvider",
    "OAuth2AuthProvider",
    "TokenInfo",
    "create_auth_provider",
    # HTTP Client
    "HttpClient",
    "HttpRequest",
    "HttpTransport",
    "RequestsTransport",
    # Middleware
    "Middleware",
    "MiddlewarePipeline",
    "RetryMiddleware",
    "RateLimitMiddleware",
    "OAuth2RefreshMiddleware",
    "LoggingMiddleware",
    "Bucket",
    "BucketRegistry",
    "Retrying",
    # Pagination
    "LinkHeaderParser",
    "PaginatedResponse",
    "PaginationResult",
    "PageCollection",
    "PageCursor",
    # Errors
    "CanvasApiError",
    "MissingApiKeyError",
    "MissingBaseUrlError",
    "MaxRetriesExceededError",
    "RetryableError",
    "RateLimitError",
    "ClientSideRateLimitError",
    "RateLimitWouldBeExceededError",
    "TokenAcquisitionTimeoutError",
    "ServerSideRateLimitError",
    "AuthenticationError",
    "MissingOAuthTokenError",
    "OAuthRefreshError",
]
