"""
Configuration for the Messages-to-Chat-Completions proxy server.
Centralizes all configuration to avoid duplication across modules.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

# App Info
APP_VERSION = "1.0.0"
APP_NAME = "newapi-claude-proxy"
APP_DESCRIPTION = "Messages API proxy for Chat Completions backends"

# Client protocol
MAX_TOKENS_CEILING = 200000

# Defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8082
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_CONNECT_TIMEOUT_S = 10.0
DEFAULT_MAX_REQUEST_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_MAX_CONCURRENT = 100
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_S = 1.0
DEFAULT_BACKOFF_MAX_S = 30.0
DEFAULT_MAX_EVENT_BYTES = 1024 * 1024
DEFAULT_STREAM_QUEUE_SIZE = 64

DEFAULT_CORS_ORIGINS: Tuple[str, ...] = ("*",)
DEFAULT_CORS_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
DEFAULT_CORS_HEADERS: Tuple[str, ...] = (
    "Content-Type",
    "Authorization",
    "X-API-Key",
    "anthropic-version",
)

# Streaming Response Headers
STREAMING_RESPONSE_HEADERS: Dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}
_TRUE_VALUES = {"1", "t", "true", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "off"}


class ConfigError(ValueError):
    """Raised when the environment holds a missing or malformed setting."""


def parse_duration(value: str) -> float:
    """
    Parse a duration such as ``30s``, ``2m``, ``500ms`` or ``15`` into seconds.

    Raises:
        ValueError: if the value is not a recognised duration
    """
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit]


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean: {value!r}")


def parse_csv(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def parse_alias_overrides(value: str) -> Dict[str, str]:
    """Parse ``alias=model,alias2=model2`` into a mapping."""
    overrides: Dict[str, str] = {}
    for item in parse_csv(value):
        alias, sep, model = item.partition("=")
        if not sep or not alias.strip() or not model.strip():
            raise ValueError(f"invalid alias entry: {item!r}")
        overrides[alias.strip()] = model.strip()
    return overrides


def _mask_secret(secret: str) -> str:
    return f"{secret[:8]}****"


@dataclass(frozen=True)
class ProxyConfig:
    """Validated proxy settings. Build with ``ProxyConfig.from_env()``."""

    backend_base_url: str
    backend_api_key: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    debug: bool = False
    request_timeout_s: float = DEFAULT_TIMEOUT_S
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    stream_read_timeout_s: Optional[float] = None
    max_request_size: int = DEFAULT_MAX_REQUEST_SIZE
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    enable_cors: bool = True
    cors_allow_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS
    cors_allow_methods: Tuple[str, ...] = DEFAULT_CORS_METHODS
    cors_allow_headers: Tuple[str, ...] = DEFAULT_CORS_HEADERS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S
    backoff_max_s: float = DEFAULT_BACKOFF_MAX_S
    max_event_bytes: int = DEFAULT_MAX_EVENT_BYTES
    stream_queue_size: int = DEFAULT_STREAM_QUEUE_SIZE
    auth_key: Optional[str] = None
    model_aliases: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProxyConfig":
        """
        Load configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            A validated ProxyConfig

        Raises:
            ConfigError: if a required variable is missing or a value is malformed
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(name)
            if value is None or not value.strip():
                return None
            return value.strip()

        def convert(name: str, parser, default):
            raw = get(name)
            if raw is None:
                return default
            try:
                return parser(raw)
            except ValueError as e:
                raise ConfigError(f"{name}: {e}") from e

        base_url = get("NEW_API")
        if not base_url:
            raise ConfigError("NEW_API environment variable is required")
        api_key = get("NEW_API_KEY")
        if not api_key:
            raise ConfigError("NEW_API_KEY environment variable is required")

        request_timeout_s = convert("PROXY_TIMEOUT", parse_duration, DEFAULT_TIMEOUT_S)

        config = cls(
            backend_base_url=base_url,
            backend_api_key=api_key,
            host=get("PROXY_HOST") or DEFAULT_HOST,
            port=convert("PROXY_PORT", int, DEFAULT_PORT),
            log_level=(get("PROXY_LOG_LEVEL") or "INFO").upper(),
            debug=convert("PROXY_DEBUG", parse_bool, False),
            request_timeout_s=request_timeout_s,
            connect_timeout_s=convert("PROXY_CONNECT_TIMEOUT", parse_duration, DEFAULT_CONNECT_TIMEOUT_S),
            stream_read_timeout_s=convert("PROXY_STREAM_READ_TIMEOUT", parse_duration, request_timeout_s),
            max_request_size=convert("PROXY_MAX_REQUEST_SIZE", int, DEFAULT_MAX_REQUEST_SIZE),
            max_concurrent=convert("PROXY_MAX_CONCURRENT", int, DEFAULT_MAX_CONCURRENT),
            enable_cors=convert("PROXY_ENABLE_CORS", parse_bool, True),
            cors_allow_origins=convert("PROXY_CORS_ALLOW_ORIGINS", parse_csv, DEFAULT_CORS_ORIGINS),
            cors_allow_methods=convert("PROXY_CORS_ALLOW_METHODS", parse_csv, DEFAULT_CORS_METHODS),
            cors_allow_headers=convert("PROXY_CORS_ALLOW_HEADERS", parse_csv, DEFAULT_CORS_HEADERS),
            max_attempts=convert("PROXY_MAX_ATTEMPTS", int, DEFAULT_MAX_ATTEMPTS),
            backoff_base_s=convert("PROXY_BACKOFF_BASE", parse_duration, DEFAULT_BACKOFF_BASE_S),
            backoff_max_s=convert("PROXY_BACKOFF_MAX", parse_duration, DEFAULT_BACKOFF_MAX_S),
            max_event_bytes=convert("PROXY_MAX_EVENT_BYTES", int, DEFAULT_MAX_EVENT_BYTES),
            stream_queue_size=convert("PROXY_STREAM_QUEUE_SIZE", int, DEFAULT_STREAM_QUEUE_SIZE),
            auth_key=get("PROXY_AUTH_KEY"),
            model_aliases=convert("PROXY_MODEL_ALIASES", parse_alias_overrides, {}),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ConfigError if any setting is out of range."""
        if not self.backend_base_url:
            raise ConfigError("NEW_API is required")
        if not self.backend_base_url.startswith(("http://", "https://")):
            raise ConfigError(f"NEW_API must be an http(s) URL: {self.backend_base_url}")
        if not self.backend_api_key:
            raise ConfigError("NEW_API_KEY is required")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"invalid server port: {self.port}")
        if self.request_timeout_s <= 0 or self.connect_timeout_s <= 0:
            raise ConfigError("timeouts must be positive")
        if self.stream_read_timeout_s is not None and self.stream_read_timeout_s <= 0:
            raise ConfigError("stream read timeout must be positive")
        if self.max_request_size <= 0:
            raise ConfigError("max request size must be positive")
        if self.max_concurrent <= 0:
            raise ConfigError("max concurrent must be positive")
        if self.max_attempts < 1:
            raise ConfigError("max attempts must be at least 1")
        if self.backoff_base_s < 0 or self.backoff_max_s < self.backoff_base_s:
            raise ConfigError("backoff max must be >= backoff base >= 0")
        if self.max_event_bytes <= 0:
            raise ConfigError("max event bytes must be positive")
        if self.stream_queue_size <= 0:
            raise ConfigError("stream queue size must be positive")

    @property
    def server_address(self) -> str:
        return f"{self.host}:{self.port}"

    def describe(self) -> str:
        """Human readable summary with secrets masked."""
        lines = [
            "Configuration:",
            f"  NEW_API: {self.backend_base_url}",
            f"  NEW_API_KEY: {_mask_secret(self.backend_api_key)}",
            f"  Server: {self.server_address}",
            f"  Log Level: {self.log_level}",
            f"  Debug: {self.debug}",
            f"  Request Timeout: {self.request_timeout_s}s",
            f"  Max Request Size: {self.max_request_size} bytes",
            f"  Max Concurrent: {self.max_concurrent}",
            f"  Retry: {self.max_attempts} attempts, backoff {self.backoff_base_s}s..{self.backoff_max_s}s",
            f"  CORS Enabled: {self.enable_cors}",
            f"  Inbound Auth: {'enabled' if self.auth_key else 'disabled'}",
        ]
        if self.model_aliases:
            lines.append(f"  Model Aliases: {len(self.model_aliases)} override(s)")
        return "\n".join(lines)
