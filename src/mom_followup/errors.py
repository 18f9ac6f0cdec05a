"""Error taxonomy for the gateway and the dispatcher."""

from __future__ import annotations

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Standard error raised by the gateway and its provider handlers."""

    status_code = 500

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        *,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class ValidationError(GatewayError):
    """Missing or invalid request fields."""

    status_code = 400

    def __init__(self, message: str, *, code: str = "invalid_request", details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, retryable=False, details=details)


class UnsupportedProviderError(ValidationError):
    """The request names a provider the gateway has no handler for."""

    def __init__(self, provider: str):
        super().__init__(
            f"Unsupported provider: {provider}",
            code="unsupported_provider",
            details={"provider": provider},
        )


class ConfigurationError(GatewayError):
    """Server-side misconfiguration, such as a missing API key."""

    status_code = 500

    def __init__(self, message: str, *, code: str = "configuration_error"):
        super().__init__(code, message, retryable=False)


class TransientUpstreamError(GatewayError):
    """Rate limiting, upstream 5xx or a network fault. Retried with backoff."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str = "upstream_unavailable",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, retryable=True, details=details)


class TerminalUpstreamError(GatewayError):
    """Upstream rejected the call or produced unusable output. Never retried."""

    status_code = 422

    def __init__(
        self,
        message: str,
        *,
        code: str = "upstream_error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, retryable=False, details=details)


class GenerationError(Exception):
    """Raised by the dispatcher when a generation call cannot be completed."""

    def __init__(self, code: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class MalformedResultError(GenerationError):
    """The gateway answered 2xx but the body is not a valid result."""

    def __init__(self, message: str):
        super().__init__("malformed_result", message)
