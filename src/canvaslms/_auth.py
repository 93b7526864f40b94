"""
Authentication providers for the canvaslms SDK.

This module provides the credential holders used by the HTTP client to
authenticate requests to the Canvas API, and the middleware that keeps
OAuth2 tokens fresh.

The main classes are:
- AuthProvider: Abstract base class for authentication providers.
- ApiKeyAuthProvider: Static access token generated in a Canvas user profile.
- OAuth2AuthProvider: OAuth2 token pair with thread-safe refresh.
- OAuth2RefreshMiddleware: Refreshes expiring tokens and heals 401 responses.

Example:
    >>> from canvaslms._auth import OAuth2AuthProvider
    >>> auth = OAuth2AuthProvider(
    ...     access_token="7~abc",
    ...     refresh_token="7~def",
    ...     expires_at=time.time() + 3600,
    ...     client_id="10000000000001",
    ...     client_secret="secret",
    ...     token_url="https://school.instructure.com/login/oauth2/token",
    ... )
    >>> headers = auth.get_auth_headers()
    >>> # {"Authorization": "Bearer 7~abc"}
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, override

import requests

from canvaslms._exceptions import CanvasApiError, MissingApiKeyError
from canvaslms._middleware import Middleware
from canvaslms._utils import fingerprint

if TYPE_CHECKING:
    from canvaslms._config import ApiConfig, AuthConfig, OAuth2Config
    from canvaslms._transport import HttpRequest, SendFunction

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT_PATH = "/login/oauth2/token"


# =============================================================================
# Exceptions
# =============================================================================


class AuthenticationError(CanvasApiError):
    """
    Raised when authentication fails.

    Attributes:
        message: Description of the authentication failure.
        cause: The underlying exception that caused the failure, if any.

    Example:
        >>> try:
        ...     token = auth.get_access_token()
        ... except AuthenticationError as e:
        ...     print(f"Auth failed: {e}")
    """

    def __init__(self, message: str, cause: Exception | None = None):
        response = getattr(cause, "response", None)
        super().__init__(
            message,
            status_code=response.status_code if response is not None else None,
            response=response,
        )
        self.cause = cause


class MissingOAuthTokenError(AuthenticationError):
    """Raised when OAuth2 mode is active but no access token is configured."""

    def __init__(self, message: str = "OAuth token not set. Configure it via CANVAS.configure(auth={'mode': 'oauth', 'oauth_token': ...}) or CANVAS_OAUTH_TOKEN."):
        super().__init__(message)


class OAuthRefreshError(AuthenticationError):
    """Raised when exchanging the refresh token for a new access token fails."""

    pass


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class TokenInfo:
    """
    Token with expiration metadata.

    Attributes:
        access_token: The OAuth2 access token.
        expires_at: Unix timestamp when the token expires, or None if unknown.
        refresh_token: Token used to obtain a new access token, if any.
    """

    access_token: str
    expires_at: float | None = None
    refresh_token: str | None = None


# =============================================================================
# Abstract Base Class
# =============================================================================


class AuthProvider(ABC):
    """
    Abstract base class for authentication providers.

    Implementations are responsible for holding and, where possible,
    renewing access tokens. All implementations must be thread-safe.

    Example:
        >>> class MyAuthProvider(AuthProvider):
        ...     def get_access_token(self) -> str:
        ...         return "my-token"
        ...
        >>> auth = MyAuthProvider()
        >>> headers = auth.get_auth_headers()
        >>> # {"Authorization": "Bearer my-token"}
    """

    @property
    def is_oauth(self) -> bool:
        return False

    @abstractmethod
    def get_access_token(self) -> str:
        """
        Return the access token to send.

        Returns:
            Access token string (without "Bearer" prefix).

        Raises:
            CanvasApiError: If no token is configured.
        """
        pass

    def get_auth_headers(self) -> dict[str, str]:
        """Return the Authorization header for HTTP requests."""
        return {"Authorization": f"Bearer {self.get_access_token()}"}

    def fingerprint(self) -> str | None:
        """
        Return a short fingerprint of the active credential, or None if unset.

        Used to scope rate-limit buckets per credential without keeping the
        credential itself in bucket keys or logs.
        """
        try:
            return fingerprint(self.get_access_token())
        except CanvasApiError:
            return None


# =============================================================================
# Implementations
# =============================================================================


class ApiKeyAuthProvider(AuthProvider):
    """
    Static access token authentication.

    Args:
        api_key: Canvas access token. May be None; requests then fail with
            MissingApiKeyError when they need the token.
    """

    def __init__(self, api_key: str | None):
        self._api_key = api_key

    @override
    def get_access_token(self) -> str:
        if not self._api_key:
            raise MissingApiKeyError()
        return self._api_key


class OAuth2AuthProvider(AuthProvider):
    """
    OAuth2 access/refresh token pair for Canvas.

    Features:
        - Expiry tracking: `is_expiring()` tells whether the token is about to expire.
        - Single-flight refresh: concurrent callers racing a refresh perform
          one token exchange; the others reuse its result.
        - Refresh hook: `on_refresh` is called with each new TokenInfo, e.g. to persist it.

    Canvas does not rotate refresh tokens, so the existing refresh token is
    kept unless the token endpoint returns a new one.

    Args:
        access_token: Current access token. May be None; requests then fail with
            MissingOAuthTokenError when they need the token.
        refresh_token: Refresh token, required for refreshing.
        expires_at: Unix timestamp when access_token expires, or None if unknown.
        client_id: Developer key client ID.
        client_secret: Developer key secret.
        token_url: Token endpoint, usually "<base_url>/login/oauth2/token".
        on_refresh: Optional callback receiving the new TokenInfo after each refresh.
        clock: Wall clock in seconds. Injectable for tests.
    """

    def __init__(
        self,
        access_token: str | None,
        refresh_token: str | None = None,
        expires_at: float | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
        on_refresh: Callable[[TokenInfo], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._token: TokenInfo | None = (
            TokenInfo(access_token, expires_at, refresh_token) if access_token else None
        )
        self._refresh_token = refresh_token
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._on_refresh = on_refresh
        self._clock = clock
        self._lock = threading.Lock()

    @property
    @override
    def is_oauth(self) -> bool:
        return True

    @property
    def token(self) -> TokenInfo | None:
        return self._token

    @override
    def get_access_token(self) -> str:
        token = self._token
        if token is None:
            raise MissingOAuthTokenError()
        return token.access_token

    def can_refresh(self) -> bool:
        """Check if a refresh token, client credentials and a token URL are all available."""
        return bool(self._refresh_token and self._client_id and self._client_secret and self._token_url)

    def is_expiring(self, buffer: float) -> bool:
        """
        Check if the token expires within `buffer` seconds.

        A token without a recorded expiry is never considered expiring.
        """
        token = self._token
        if token is None or token.expires_at is None:
            return False
        return token.expires_at - self._clock() <= buffer

    def refresh(self, stale_token: str | None = None) -> str:
        """
        Exchange the refresh token for a new access token.

        Thread-safe and single-flight: when `stale_token` is given and the
        current token already differs from it, another caller refreshed in
        the meantime and the current token is returned without a new exchange.

        Args:
            stale_token: The token the caller found expired or rejected.

        Returns:
            The new (or already refreshed) access token.

        Raises:
            OAuthRefreshError: If refreshing is not possible or the token endpoint fails.
        """
        with self._lock:
            current = self._token
            if stale_token is not None and current is not None and current.access_token != stale_token:
                logger.debug("OAuth2 | Token already refreshed by a concurrent request")
                return current.access_token

            if not self.can_refresh():
                raise OAuthRefreshError(
                    "Cannot refresh OAuth token: refresh token, client_id, client_secret "
                    "and token URL are all required."
                )

            new_token = self._fetch_refreshed_token()
            self._token = new_token
            self._refresh_token = new_token.refresh_token
            logger.info("OAuth2 | Access token refreshed")

        if self._on_refresh is not None:
            self._on_refresh(new_token)
        return new_token.access_token

    def _fetch_refreshed_token(self) -> TokenInfo:
        """
        Call the token endpoint with the refresh_token grant.

        Raises:
            OAuthRefreshError: If the token request fails.
        """
        assert self._token_url is not None  # for type checker
        try:
            response = requests.post(
                self._token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": self._refresh_token,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=30,
            )
            response.raise_for_status()

            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            expires_in = data.get("expires_in")

            return TokenInfo(
                access_token=data["access_token"],
                expires_at=self._clock() + float(expires_in) if expires_in is not None else None,
                refresh_token=data.get("refresh_token") or self._refresh_token,
            )

        except requests.HTTPError as e:
            raise OAuthRefreshError(
                f"Failed to refresh OAuth token (HTTP {e.response.status_code}): {e}",
                cause=e,
            ) from e
        except requests.RequestException as e:
            raise OAuthRefreshError(
                f"Failed to refresh OAuth token: {e}",
                cause=e,
            ) from e
        except (KeyError, ValueError) as e:
            raise OAuthRefreshError(
                f"Invalid token response: {e}",
                cause=e,
            ) from e


# =============================================================================
# Middleware
# =============================================================================


class OAuth2RefreshMiddleware(Middleware):
    """
    Middleware that keeps OAuth2 access tokens valid.

    A pass-through unless the auth provider is an OAuth2AuthProvider and the
    request carries an Authorization header.

    Proactive path (auto_refresh): a token expiring within refresh_buffer
    seconds is refreshed before the request is sent.

    Reactive path (retry_on_401): a 401 response triggers one refresh and
    exactly one resend. A second 401 is returned unchanged.

    A failed refresh raises OAuthRefreshError immediately; it is never retried here.

    Args:
        auth: The auth provider in use.
        config: OAuth2 settings. If None, uses CANVAS.config.oauth2.
    """

    name = "oauth2_refresh"

    def __init__(self, auth: AuthProvider, config: OAuth2Config | None = None):
        if config is None:
            from canvaslms._config import CANVAS

            config = CANVAS.config.oauth2

        self.auth = auth
        self.config = config

    @staticmethod
    def _bearer_token(request: HttpRequest) -> str | None:
        header = request.header("Authorization")
        if header and header.startswith("Bearer "):
            return header[len("Bearer "):]
        return None

    def _refreshed(self, auth: OAuth2AuthProvider, request: HttpRequest) -> HttpRequest:
        token = auth.refresh(stale_token=self._bearer_token(request))
        return request.with_header("Authorization", f"Bearer {token}")

    @override
    def wrap(self, next_send: SendFunction) -> SendFunction:
        def send(request: HttpRequest) -> requests.Response:
            auth = self.auth
            if not isinstance(auth, OAuth2AuthProvider) or request.header("Authorization") is None:
                return next_send(request)

            if (
                self.config.auto_refresh
                and auth.can_refresh()
                and auth.is_expiring(self.config.refresh_buffer)
            ):
                logger.info(f"OAuth2 | Token expires within {self.config.refresh_buffer}s, refreshing")
                request = self._refreshed(auth, request)

            response = next_send(request)

            if response.status_code == 401 and self.config.retry_on_401 and auth.can_refresh():
                logger.info(f"OAuth2 | {request.method} {request.url} got 401, refreshing and resending once")
                response = next_send(self._refreshed(auth, request))

            return response

        return send


# =============================================================================
# Helper Functions
# =============================================================================


def create_auth_provider(
    config: AuthConfig | None = None,
    api: ApiConfig | None = None,
) -> AuthProvider:
    """
    Create an AuthProvider from configuration.

    Args:
        config: Auth settings. If None, uses CANVAS.config.auth.
        api: API settings, used to derive the OAuth2 token URL. If None, uses CANVAS.config.api.

    Returns:
        OAuth2AuthProvider in "oauth" mode, ApiKeyAuthProvider otherwise.

    Example:
        >>> from canvaslms import CANVAS
        >>> CANVAS.configure(auth={"api_key": "1~abc"})
        >>> auth = create_auth_provider()
    """
    if config is None or api is None:
        from canvaslms._config import CANVAS

        config = config or CANVAS.config.auth
        api = api or CANVAS.config.api

    if not config.is_oauth:
        return ApiKeyAuthProvider(config.api_key)

    token_url = f"{api.base_url.rstrip('/')}{TOKEN_ENDPOINT_PATH}" if api.base_url else None
    return OAuth2AuthProvider(
        access_token=config.oauth_token,
        refresh_token=config.oauth_refresh_token,
        expires_at=config.oauth_expires_at,
        client_id=config.client_id,
        client_secret=config.client_secret,
        token_url=token_url,
    )
