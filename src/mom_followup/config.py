"""Configuration utilities for the MOM follow-up gateway and dispatcher."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from .models import Provider
from .retry import RetryPolicy

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_GATEWAY_URL = "http://127.0.0.1:8888/generate-mom"


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = _optional(env.get(name))
        if value is not None:
            return value
    return None


def _check_http_url(value: str, name: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigError(f"{name} must be an http:// or https:// URL")
    return value.rstrip("/")


def _retry_settings(env: Mapping[str, str]) -> RetryPolicy:
    try:
        retry_max = int(env.get("MOM_RETRY_MAX", "5"))
        initial_delay = float(env.get("MOM_RETRY_INITIAL_DELAY", "1.0"))
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric configuration: {exc}") from exc
    if retry_max < 1:
        raise ConfigError("MOM_RETRY_MAX must be >= 1")
    if initial_delay < 0:
        raise ConfigError("MOM_RETRY_INITIAL_DELAY must be >= 0")
    return RetryPolicy(max_attempts=retry_max, initial_delay=initial_delay)


def _timeout(env: Mapping[str, str]) -> float:
    try:
        request_timeout = float(env.get("MOM_REQUEST_TIMEOUT", "60.0"))
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric configuration: {exc}") from exc
    if request_timeout <= 0:
        raise ConfigError("MOM_REQUEST_TIMEOUT must be > 0")
    return request_timeout


@dataclass(frozen=True)
class GatewayConfig:
    """Server-side configuration. API keys here are fallbacks only."""

    gemini_api_key: Optional[str] = field(default=None, repr=False)
    openrouter_api_key: Optional[str] = field(default=None, repr=False)
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
    request_timeout: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    host: str = "127.0.0.1"
    port: int = 8888
    log_level: str = "INFO"
    metrics_backend: str = "logging"
    metrics_port: Optional[int] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """Build configuration from environment variables."""
        env = os.environ if env is None else env

        try:
            port = int(env.get("MOM_PORT", "8888"))
            metrics_port_raw = env.get("MOM_METRICS_PORT")
            metrics_port = int(metrics_port_raw) if metrics_port_raw else None
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        metrics_backend = env.get("MOM_METRICS_BACKEND", "logging").strip().lower()
        if metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("MOM_METRICS_BACKEND must be 'logging' or 'prometheus'")
        if not 0 < port < 65536:
            raise ConfigError("MOM_PORT must be between 1 and 65535")
        if metrics_port is not None and metrics_port < 0:
            raise ConfigError("MOM_METRICS_PORT must be >= 0 when provided")

        return cls(
            gemini_api_key=_first(env, "MOM_GEMINI_API_KEY", "GEMINI_API_KEY"),
            openrouter_api_key=_first(env, "MOM_OPENROUTER_API_KEY", "OPENROUTER_API_KEY"),
            gemini_base_url=_check_http_url(
                env.get("MOM_GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL), "MOM_GEMINI_BASE_URL"
            ),
            openrouter_base_url=_check_http_url(
                env.get("MOM_OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL), "MOM_OPENROUTER_BASE_URL"
            ),
            request_timeout=_timeout(env),
            retry=_retry_settings(env),
            host=env.get("MOM_HOST", "127.0.0.1"),
            port=port,
            log_level=env.get("MOM_LOG_LEVEL", "INFO").upper(),
            metrics_backend=metrics_backend,
            metrics_port=metrics_port,
        )

    def default_api_key(self, provider: Provider) -> Optional[str]:
        """Return the server-held key for ``provider``, if one is configured."""
        if provider is Provider.GEMINI:
            return self.gemini_api_key
        if provider is Provider.OPENROUTER:
            return self.openrouter_api_key
        return None


@dataclass(frozen=True)
class DispatcherConfig:
    """Caller-side configuration for reaching the gateway."""

    gateway_url: str = DEFAULT_GATEWAY_URL
    request_timeout: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    store_url: Optional[str] = None
    store_prefix: str = "mom"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "DispatcherConfig":
        """Build configuration from environment variables."""
        env = os.environ if env is None else env

        store_url = _optional(env.get("MOM_STORE_URL"))
        if store_url is not None and urlparse(store_url).scheme not in {"redis", "rediss"}:
            raise ConfigError("MOM_STORE_URL must use redis:// or rediss:// scheme")

        return cls(
            gateway_url=_check_http_url(env.get("MOM_GATEWAY_URL", DEFAULT_GATEWAY_URL), "MOM_GATEWAY_URL"),
            request_timeout=_timeout(env),
            retry=_retry_settings(env),
            store_url=store_url,
            store_prefix=env.get("MOM_STORE_PREFIX", "mom").rstrip(":"),
            log_level=env.get("MOM_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def gateway_base_url(self) -> str:
        """Gateway root, used for ``/health`` and ``/models``."""
        return self.gateway_url.rsplit("/", 1)[0]
