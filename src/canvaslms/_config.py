"""
Global configuration for the canvaslms SDK.

This module provides a simple configuration system following Convention over Configuration (CoC).
Users can optionally call CANVAS.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Options passed to client and middleware constructors
2. Values set via CANVAS.configure()
3. Environment variables (CANVAS_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from canvaslms import CANVAS
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> max_attempts = CANVAS.config.retry.max_attempts
    >>>
    >>> # Custom configuration
    >>> CANVAS.configure(
    ...     auth={"api_key": "1~abc"},
    ...     api={"base_url": "https://school.instructure.com"},
    ...     rate_limit={"wait_on_limit": False},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from functools import wraps
from typing import Any, Literal, Self

# Type alias for authentication modes
AuthMode = Literal["api_key", "oauth"]

_SECTIONS = ("auth", "api", "retry", "rate_limit", "oauth2", "logging")


def _csv_ints(value: str) -> tuple[int, ...]:
    return tuple(int(v.strip()) for v in value.split(",") if v.strip())


def _csv_strs(value: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("CANVAS_TIMEOUT", type_hint=int)
        30
        >>> EnvVars.get("CANVAS_API_KEY")
        '1~abc'
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` method for creating new instances
    with partial field updates. Uses strict validation to catch
    typos and invalid field names early.

    Example:
        >>> config = RetryConfig()
        >>> custom = config.with_overrides({"max_attempts": 5})
        >>> custom.max_attempts
        5
    """

    def with_overrides(
        self,
        overrides: dict[str, Any],
        allow_none_fields: set[str] | None = None,
    ) -> Self:
        """
        Return a new instance with specified fields overridden.

        Args:
            overrides: Dict of field names to new values.
                       Only existing fields are allowed.
            allow_none_fields: Set of field names that accept None as a valid value.
                       By default, None values are filtered out.

        Returns:
            New instance with updated values.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        allow_none = allow_none_fields or set()
        filtered = {k: v for k, v in overrides.items() if v is not None or k in allow_none}

        # Lists and sets are stored as tuples
        filtered = {k: tuple(v) if isinstance(v, (list, set, frozenset)) else v for k, v in filtered.items()}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Reads env vars declared in field metadata and applies them as overrides.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(
                    var_name=env_var,
                    type_hint=f.type,
                    converter=f.metadata.get("converter"),
                )
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class SdkConfig:
    """
    SDK metadata (read-only, not configurable).

    Attributes:
        version: The installed SDK version.
    """

    version: str

    @classmethod
    def detect(cls) -> SdkConfig:
        """Detect SDK metadata from the installed distribution."""
        from canvaslms import __version__

        return cls(version=__version__)


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Authentication configuration for the Canvas API.

    Canvas accepts either a static access token generated in the user's
    profile ("api_key" mode) or an OAuth2 token pair issued through a
    developer key ("oauth" mode). Only OAuth2 tokens can be refreshed.

    Attributes:
        mode: Which credential is active: "api_key" or "oauth".
            Env var: CANVAS_AUTH_MODE

        api_key: Static Canvas access token.
            Env var: CANVAS_API_KEY

        oauth_token: OAuth2 access token.
            Env var: CANVAS_OAUTH_TOKEN

        oauth_refresh_token: OAuth2 refresh token.
            Env var: CANVAS_OAUTH_REFRESH_TOKEN

        oauth_expires_at: Unix timestamp when oauth_token expires. None means unknown.
            Env var: CANVAS_OAUTH_EXPIRES_AT

        client_id: Developer key client ID, used to refresh OAuth2 tokens.
            Env var: CANVAS_OAUTH_CLIENT_ID

        client_secret: Developer key secret, used to refresh OAuth2 tokens.
            Env var: CANVAS_OAUTH_CLIENT_SECRET

    Example:
        >>> from canvaslms import CANVAS
        >>> if CANVAS.config.auth.has_credentials():
        ...     print("Credentials configured")
    """

    mode: AuthMode = field(default="api_key", metadata={"env": "CANVAS_AUTH_MODE"})
    api_key: str | None = field(default=None, metadata={"env": "CANVAS_API_KEY"})
    oauth_token: str | None = field(default=None, metadata={"env": "CANVAS_OAUTH_TOKEN"})
    oauth_refresh_token: str | None = field(default=None, metadata={"env": "CANVAS_OAUTH_REFRESH_TOKEN"})
    oauth_expires_at: float | None = field(default=None, metadata={"env": "CANVAS_OAUTH_EXPIRES_AT", "converter": float})
    client_id: str | None = field(default=None, metadata={"env": "CANVAS_OAUTH_CLIENT_ID"})
    client_secret: str | None = field(default=None, metadata={"env": "CANVAS_OAUTH_CLIENT_SECRET"})

    @property
    def is_oauth(self) -> bool:
        return self.mode == "oauth"

    def has_credentials(self) -> bool:
        """Check if the credential for the active mode is set."""
        if self.is_oauth:
            return bool(self.oauth_token)
        return bool(self.api_key)

    def can_refresh(self) -> bool:
        """Check if an OAuth2 refresh is possible with the configured values."""
        return bool(self.oauth_refresh_token and self.client_id and self.client_secret)

    def validate(self) -> Self:
        """Validate auth configuration fields."""
        if self.mode not in ("api_key", "oauth"):
            raise ConfigValidationError(
                "mode", self.mode,
                "Must be 'api_key' or 'oauth'.", section="auth"
            )
        for name in ("api_key", "oauth_token", "oauth_refresh_token", "client_id", "client_secret"):
            value = getattr(self, name)
            if value is not None and value == "":
                raise ConfigValidationError(
                    name, value,
                    "Must not be empty string.", section="auth"
                )
        return self


@dataclass(frozen=True)
class ApiConfig(OverridableConfig):
    """
    Canvas API endpoint configuration.

    Attributes:
        base_url: Canvas instance root, e.g. "https://school.instructure.com".
            Env var: CANVAS_BASE_URL

        api_version: REST API version segment added to relative paths.
            Env var: CANVAS_API_VERSION

        timeout: Per-request transport timeout in seconds.
            Env var: CANVAS_TIMEOUT

        account_id: Default account ID for account-scoped resources.
            Env var: CANVAS_ACCOUNT_ID

        as_user_id: Masquerade as this user on every request (admin only).
            Env var: CANVAS_AS_USER_ID
    """

    base_url: str | None = field(default=None, metadata={"env": "CANVAS_BASE_URL"})
    api_version: str = field(default="v1", metadata={"env": "CANVAS_API_VERSION"})
    timeout: int = field(default=30, metadata={"env": "CANVAS_TIMEOUT"})
    account_id: int | None = field(default=None, metadata={"env": "CANVAS_ACCOUNT_ID", "converter": int})
    as_user_id: int | None = field(default=None, metadata={"env": "CANVAS_AS_USER_ID", "converter": int})

    def validate(self) -> Self:
        """Validate API configuration fields."""
        if self.base_url is not None and not self.base_url.startswith(("http://", "https://")):
            raise ConfigValidationError(
                "base_url", self.base_url,
                "Must start with 'http://' or 'https://'.", section="api"
            )
        if not self.api_version:
            raise ConfigValidationError(
                "api_version", self.api_version,
                "Must not be empty.", section="api"
            )
        if self.timeout <= 0:
            raise ConfigValidationError(
                "timeout", self.timeout,
                "Must be greater than 0.", section="api"
            )
        return self


@dataclass(frozen=True)
class RetryConfig(OverridableConfig):
    """
    Configuration for the retry middleware.

    Attributes:
        max_attempts: Total attempts including the first one. 1 disables retries.
            Env var: CANVAS_RETRY_MAX_ATTEMPTS

        delay: Base delay in milliseconds before the second attempt.
            Env var: CANVAS_RETRY_DELAY

        multiplier: Exponential growth factor applied per attempt.
            Env var: CANVAS_RETRY_MULTIPLIER

        max_delay: Upper bound for any single delay, in milliseconds.
            Env var: CANVAS_RETRY_MAX_DELAY

        jitter: Randomly shorten each delay by up to 25%.
            Env var: CANVAS_RETRY_JITTER

        retry_on_status: HTTP status codes that trigger a retry.
            403 only retries when Canvas reports the rate limit as exceeded.
            Env var: CANVAS_RETRY_ON_STATUS (comma-separated)

        retry_on_timeout: Also retry timeouts and connection errors.
            Env var: CANVAS_RETRY_ON_TIMEOUT

    Example:
        >>> CANVAS.configure(retry={"max_attempts": 5, "delay": 500})
    """

    max_attempts: int = field(default=3, metadata={"env": "CANVAS_RETRY_MAX_ATTEMPTS"})
    delay: int = field(default=1000, metadata={"env": "CANVAS_RETRY_DELAY"})
    multiplier: float = field(default=2.0, metadata={"env": "CANVAS_RETRY_MULTIPLIER"})
    max_delay: int = field(default=16000, metadata={"env": "CANVAS_RETRY_MAX_DELAY"})
    jitter: bool = field(default=True, metadata={"env": "CANVAS_RETRY_JITTER"})
    retry_on_status: tuple[int, ...] = field(
        default=(403, 500, 502, 503, 504),
        metadata={"env": "CANVAS_RETRY_ON_STATUS", "converter": _csv_ints},
    )
    retry_on_timeout: bool = field(default=True, metadata={"env": "CANVAS_RETRY_ON_TIMEOUT"})

    def validate(self) -> Self:
        """Validate retry configuration fields."""
        if self.max_attempts < 1:
            raise ConfigValidationError(
                "max_attempts", self.max_attempts,
                "Must be at least 1.", section="retry"
            )
        if self.delay < 0:
            raise ConfigValidationError(
                "delay", self.delay,
                "Must be >= 0.", section="retry"
            )
        if self.multiplier < 1:
            raise ConfigValidationError(
                "multiplier", self.multiplier,
                "Must be >= 1.", section="retry"
            )
        if self.max_delay < self.delay:
            raise ConfigValidationError(
                "max_delay", self.max_delay,
                f"Must be >= delay ({self.delay}).", section="retry"
            )
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Configuration for the Canvas leaky-bucket rate limiter.

    Canvas charges each request a cost against a per-token bucket and reports
    what is left in the X-Rate-Limit-Remaining header. The bucket drains
    back to full at a fixed rate. This limiter mirrors that accounting
    locally so the client slows down before Canvas starts rejecting requests.

    Attributes:
        enabled: Kill switch for the rate-limit middleware.
            Env var: CANVAS_RATE_LIMIT_ENABLED

        bucket_size: Bucket capacity in cost units.
            Env var: CANVAS_RATE_LIMIT_BUCKET_SIZE

        leak_rate: Cost units restored per second.
            Env var: CANVAS_RATE_LIMIT_LEAK_RATE

        initial_cost: Estimated cost pre-charged before each request.
            Env var: CANVAS_RATE_LIMIT_INITIAL_COST

        min_remaining: Threshold below which requests wait or fail.
            Env var: CANVAS_RATE_LIMIT_MIN_REMAINING

        wait_on_limit: Sleep until enough capacity leaks back (True) or fail fast (False).
            Env var: CANVAS_RATE_LIMIT_WAIT_ON_LIMIT

        max_wait_time: Longest acceptable wait in seconds. Longer waits fail immediately.
            Env var: CANVAS_RATE_LIMIT_MAX_WAIT_TIME

    Example:
        >>> CANVAS.configure(rate_limit={"min_remaining": 200, "wait_on_limit": False})
    """

    enabled: bool = field(default=True, metadata={"env": "CANVAS_RATE_LIMIT_ENABLED"})
    bucket_size: float = field(default=3000.0, metadata={"env": "CANVAS_RATE_LIMIT_BUCKET_SIZE"})
    leak_rate: float = field(default=50.0, metadata={"env": "CANVAS_RATE_LIMIT_LEAK_RATE"})
    initial_cost: float = field(default=50.0, metadata={"env": "CANVAS_RATE_LIMIT_INITIAL_COST"})
    min_remaining: float = field(default=100.0, metadata={"env": "CANVAS_RATE_LIMIT_MIN_REMAINING"})
    wait_on_limit: bool = field(default=True, metadata={"env": "CANVAS_RATE_LIMIT_WAIT_ON_LIMIT"})
    max_wait_time: float = field(default=60.0, metadata={"env": "CANVAS_RATE_LIMIT_MAX_WAIT_TIME"})

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        if self.bucket_size <= 0:
            raise ConfigValidationError(
                "bucket_size", self.bucket_size,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.leak_rate <= 0:
            raise ConfigValidationError(
                "leak_rate", self.leak_rate,
                "Must be greater than 0.", section="rate_limit"
            )
        if self.initial_cost < 0:
            raise ConfigValidationError(
                "initial_cost", self.initial_cost,
                "Must be >= 0.", section="rate_limit"
            )
        if not 0 <= self.min_remaining <= self.bucket_size:
            raise ConfigValidationError(
                "min_remaining", self.min_remaining,
                f"Must be between 0 and bucket_size ({self.bucket_size}).", section="rate_limit"
            )
        if self.max_wait_time < 0:
            raise ConfigValidationError(
                "max_wait_time", self.max_wait_time,
                "Must be >= 0.", section="rate_limit"
            )
        return self


@dataclass(frozen=True)
class OAuth2Config(OverridableConfig):
    """
    Configuration for the OAuth2 refresh middleware.

    Attributes:
        auto_refresh: Refresh tokens that expire within refresh_buffer before sending.
            Env var: CANVAS_OAUTH2_AUTO_REFRESH

        retry_on_401: Refresh and resend once when Canvas answers 401.
            Env var: CANVAS_OAUTH2_RETRY_ON_401

        refresh_buffer: Seconds before expiry at which a token counts as expiring.
            Env var: CANVAS_OAUTH2_REFRESH_BUFFER
    """

    auto_refresh: bool = field(default=True, metadata={"env": "CANVAS_OAUTH2_AUTO_REFRESH"})
    retry_on_401: bool = field(default=True, metadata={"env": "CANVAS_OAUTH2_RETRY_ON_401"})
    refresh_buffer: int = field(default=300, metadata={"env": "CANVAS_OAUTH2_REFRESH_BUFFER"})

    def validate(self) -> Self:
        """Validate OAuth2 configuration fields."""
        if self.refresh_buffer < 0:
            raise ConfigValidationError(
                "refresh_buffer", self.refresh_buffer,
                "Must be >= 0.", section="oauth2"
            )
        return self


@dataclass(frozen=True)
class LoggingConfig(OverridableConfig):
    """
    Configuration for the HTTP logging middleware.

    Attributes:
        enabled: Emit request/response events at all.
            Env var: CANVAS_LOGGING_ENABLED

        log_responses: Also log successful responses. Errors are always logged.
            Env var: CANVAS_LOGGING_LOG_RESPONSES

        sanitize_fields: Top-level body fields replaced by the redaction marker.
            Env var: CANVAS_LOGGING_SANITIZE_FIELDS (comma-separated)

        max_body_length: Logged bodies longer than this are truncated.
            Env var: CANVAS_LOGGING_MAX_BODY_LENGTH
    """

    enabled: bool = field(default=True, metadata={"env": "CANVAS_LOGGING_ENABLED"})
    log_responses: bool = field(default=True, metadata={"env": "CANVAS_LOGGING_LOG_RESPONSES"})
    sanitize_fields: tuple[str, ...] = field(
        default=(
            "password",
            "token",
            "api_key",
            "secret",
            "authorization",
            "access_token",
            "refresh_token",
            "client_secret",
        ),
        metadata={"env": "CANVAS_LOGGING_SANITIZE_FIELDS", "converter": _csv_strs},
    )
    max_body_length: int = field(default=1000, metadata={"env": "CANVAS_LOGGING_MAX_BODY_LENGTH"})

    def validate(self) -> Self:
        """Validate logging configuration fields."""
        if self.max_body_length <= 0:
            raise ConfigValidationError(
                "max_body_length", self.max_body_length,
                "Must be greater than 0.", section="logging"
            )
        return self


@dataclass(frozen=True)
class ConfigEntry:
    """
    A configuration field with its resolved value and source.

    Attributes:
        name: The field name (e.g., "max_attempts").
        value: The resolved value.
        source: Where the value came from:
            - "default": Hardcoded default value
            - "env:VAR_NAME": Environment variable
            - "user": Set via CANVAS.configure()

    Example:
        >>> entry = ConfigEntry("max_attempts", 5, "user")
        >>> entry.formatted_value
        '5'
    """

    name: str
    value: Any
    source: str

    SECRET_FIELDS = frozenset({"api_key", "oauth_token", "oauth_refresh_token", "client_secret"})

    @property
    def formatted_value(self) -> str:
        """
        Return value formatted for display.

        Masks credentials showing only the first and last 4 characters,
        and truncates long strings.

        Examples:
            >>> ConfigEntry("client_secret", "super-secret-key", "user").formatted_value
            'supe********-key'
            >>> ConfigEntry("api_key", "short", "user").formatted_value
            '********t'
        """
        if self.name in self.SECRET_FIELDS and self.value is not None:
            secret = str(self.value)
            if len(secret) >= 12:
                return f"{secret[:4]}********{secret[-4:]}"
            if len(secret) >= 3:
                visible = max(1, len(secret) // 3)
                return f"********{secret[-visible:]}"
            return "********"

        if self.value is None:
            return "None"

        str_value = str(self.value)
        max_length = 50
        if len(str_value) > max_length:
            return str_value[: max_length - 3] + "..."

        return str_value


@dataclass(frozen=True)
class ConfigTracker:
    """
    Tracks the source of config field values.

    An immutable tracker that records where each configuration value came from
    (default, env var, or configure()). Used by CANVAS.explain().

    Attributes:
        sources: Structure {"section": {"field": "source"}}.
    """

    sources: dict[str, dict[str, str]] = field(default_factory=dict)

    @staticmethod
    def track_changes(
        source_type: str,
    ) -> Callable[[Callable[..., CanvasConfig]], Callable[..., CanvasConfig]]:
        """
        Decorator that records which fields the decorated method touched.

        Args:
            source_type: Source label for tracking ("env" or "user").
        """

        def decorator(
            method: Callable[..., CanvasConfig],
        ) -> Callable[..., CanvasConfig]:
            @wraps(method)
            def wrapper(self: CanvasConfig, *args: Any, **kwargs: Any) -> CanvasConfig:
                new_config = method(self, *args, **kwargs)
                new_tracker = self._tracker.with_changes_tracked(
                    new_config, source_type, overrides=kwargs
                )
                return replace(new_config, _tracker=new_tracker)

            return wrapper

        return decorator

    def with_changes_tracked(
        self,
        new_config: CanvasConfig,
        source_type: str,
        overrides: dict[str, Any] | None = None,
    ) -> ConfigTracker:
        """Return new tracker with the fields touched by `source_type` recorded."""
        new_sources = {section: dict(flds) for section, flds in self.sources.items()}

        for section_name in _SECTIONS:
            section_config = getattr(new_config, section_name)
            section_sources = new_sources.setdefault(section_name, {})
            section_overrides = (overrides or {}).get(section_name) or {}

            for f in fields(section_config):
                if source_type == "env":
                    env_var = f.metadata.get("env")
                    # Same rule as EnvVars.get: empty counts as unset
                    if env_var and os.environ.get(env_var):
                        section_sources[f.name] = f"env:{env_var}"
                elif source_type == "user" and f.name in section_overrides:
                    if section_overrides[f.name] is not None:
                        section_sources[f.name] = "user"

        return ConfigTracker(sources={k: v for k, v in new_sources.items() if v})


@dataclass(frozen=True)
class CanvasConfig:
    """
    Global configuration for the canvaslms SDK.

    Aggregates all configuration sections. Access via `CANVAS.config`.

    Example:
        >>> from canvaslms import CANVAS
        >>> CANVAS.config.retry.max_attempts
        3
        >>> CANVAS.config.rate_limit.bucket_size
        3000.0
    """

    sdk: SdkConfig = field(default_factory=SdkConfig.detect)
    auth: AuthConfig = field(default_factory=AuthConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    oauth2: OAuth2Config = field(default_factory=OAuth2Config)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    _tracker: ConfigTracker = field(default_factory=ConfigTracker, repr=False)

    @ConfigTracker.track_changes("env")
    def with_env_vars(self) -> CanvasConfig:
        """Return a new config with CANVAS_* environment variables applied on top."""
        return replace(
            self,
            auth=self.auth.with_env_vars(),
            api=self.api.with_env_vars(),
            retry=self.retry.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
            oauth2=self.oauth2.with_env_vars(),
            logging=self.logging.with_env_vars(),
        )

    @ConfigTracker.track_changes("user")
    def with_section_overrides(
        self,
        *,
        auth: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        oauth2: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ) -> CanvasConfig:
        """
        Return a new config with overrides applied to nested sections.

        Each section dict is merged with the existing section config,
        only overriding the specified fields.

        Example:
            >>> custom = CanvasConfig().with_section_overrides(
            ...     retry={"max_attempts": 5},
            ...     api={"base_url": "https://school.instructure.com"},
            ... )
        """
        return replace(
            self,
            auth=self.auth.with_overrides(auth or {}),
            api=self.api.with_overrides(api or {}),
            retry=self.retry.with_overrides(retry or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
            oauth2=self.oauth2.with_overrides(oauth2 or {}),
            logging=self.logging.with_overrides(logging or {}),
        )

    def validate(self) -> Self:
        for section_name in _SECTIONS:
            getattr(self, section_name).validate()
        return self

    def explain_data(self) -> dict[str, list[ConfigEntry]]:
        """
        Return config data structured for explain output.

        Returns:
            Dict mapping section names to list of ConfigEntry objects.
        """
        result: dict[str, list[ConfigEntry]] = {
            "sdk": [
                ConfigEntry(name=f.name, value=getattr(self.sdk, f.name), source="-")
                for f in fields(self.sdk)
            ]
        }

        for section_name in _SECTIONS:
            section_config = getattr(self, section_name)
            section_sources = self._tracker.sources.get(section_name, {})
            result[section_name] = [
                ConfigEntry(
                    name=f.name,
                    value=getattr(section_config, f.name),
                    source=section_sources.get(f.name, "default"),
                )
                for f in fields(section_config)
            ]

        return result


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _CANVAS:
    """
    Singleton for SDK configuration.

    Use `CANVAS.configure()` to customize settings and `CANVAS.config`
    to access current configuration.

    Example:
        >>> from canvaslms import CANVAS
        >>> CANVAS.configure(auth={"api_key": "..."})
        >>> print(CANVAS.config.api.timeout)
    """

    def __init__(self) -> None:
        self._config: CanvasConfig = CanvasConfig().with_env_vars()

    def configure(
        self,
        *,
        auth: dict[str, Any] | None = None,
        api: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        oauth2: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> CanvasConfig:
        """
        Configure SDK settings.

        Call at application startup to customize defaults. Updates the
        internal configuration and returns the configured instance.

        Args:
            auth: Credential overrides (mode, api_key, oauth_token, ...).
            api: Endpoint overrides (base_url, api_version, timeout, ...).
            retry: Retry middleware overrides.
            rate_limit: Rate-limit middleware overrides.
            oauth2: OAuth2 refresh middleware overrides.
            logging: Logging middleware overrides.
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured CanvasConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = CanvasConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            auth=auth,
            api=api,
            retry=retry,
            rate_limit=rate_limit,
            oauth2=oauth2,
            logging=logging,
        )
        return self.validate()

    @property
    def config(self) -> CanvasConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> CanvasConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = CanvasConfig().with_env_vars()
        return self.validate()

    def validate(self) -> CanvasConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        return self._config.validate()

    def explain(
        self,
        output: Callable[[str], None] = print,
    ) -> None:
        """
        Print current configuration with sources.

        Args:
            output: Callable to output each line. Defaults to print.
                    Can be used with logging: `CANVAS.explain(logger.info)`
        """
        name_width = 25
        value_width = 50
        total_width = 2 + name_width + 2 + (value_width + 2) + 1 + 8

        output("Canvas Configuration:")
        output("=" * total_width)
        output(f"  {'Field':<{name_width}} │ {'Value':<{value_width}} │ Source")
        output(f"--{'-' * name_width}-+{'-' * (value_width + 2)}+--------")

        for section_name, entries in self._config.explain_data().items():
            output(f"[{section_name}]")
            for entry in entries:
                dots = "." * (name_width - len(entry.name))
                value_padded = entry.formatted_value.ljust(value_width)
                marker = "✎" if entry.source not in ("default", "-") else " "
                output(f"  {entry.name} {dots} {value_padded} {marker} {entry.source}")

        output("=" * total_width)

    def __repr__(self) -> str:
        return f"CANVAS(config={self._config!r})"


# Global singleton instance - always reflects current configuration
CANVAS: _CANVAS = _CANVAS()
CANVAS.validate()
