"""Provider gateway: routing, credential resolution and error translation."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Callable, List, Mapping, Optional

from .config import GatewayConfig
from .errors import (
    ConfigurationError,
    GatewayError,
    TerminalUpstreamError,
    UnsupportedProviderError,
    ValidationError,
)
from .metrics import GenerationEvent, LoggingMetricsCollector, MetricsCollector, provider_label
from .models import PROVIDER_PROFILES, GenerationRequest, GenerationResult, Model, Provider
from .providers.base import ProviderCall, ProviderHandler
from .providers.gemini import GeminiHandler
from .providers.openrouter import OpenRouterHandler
from .retry import Retrier, SleepFn

LOGGER = logging.getLogger("mom_followup.gateway")

HandlerFactory = Callable[[GatewayConfig, Retrier], ProviderHandler]


def _gemini(config: GatewayConfig, retrier: Retrier) -> ProviderHandler:
    return GeminiHandler(base_url=config.gemini_base_url, timeout=config.request_timeout, retrier=retrier)


def _openrouter(config: GatewayConfig, retrier: Retrier) -> ProviderHandler:
    return OpenRouterHandler(base_url=config.openrouter_base_url, timeout=config.request_timeout, retrier=retrier)


HANDLER_FACTORIES: Mapping[Provider, HandlerFactory] = {
    Provider.GEMINI: _gemini,
    Provider.OPENROUTER: _openrouter,
}


def create_handlers(config: GatewayConfig, *, sleep: Optional[SleepFn] = None) -> dict:
    """Instantiate one handler per provider, each with its own retrier."""
    handlers = {}
    for provider, factory in HANDLER_FACTORIES.items():
        retrier = Retrier(
            config.retry,
            sleep=sleep,
            logger=logging.getLogger(f"mom_followup.providers.{provider.value}"),
            label=f"{PROVIDER_PROFILES[provider].display_name} call",
        )
        handlers[provider] = factory(config, retrier)
    return handlers


def resolve_provider(value: str) -> Provider:
    try:
        return Provider(value)
    except ValueError as exc:
        raise UnsupportedProviderError(value) from exc


class ProviderGateway:
    """Route normalized requests to the provider handler that speaks its wire format."""

    def __init__(
        self,
        *,
        config: GatewayConfig,
        handlers: Optional[Mapping[Provider, ProviderHandler]] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self._handlers = dict(handlers) if handlers is not None else create_handlers(config)
        self._metrics = metrics or LoggingMetricsCollector()

    @property
    def providers(self) -> List[str]:
        return [provider.value for provider in self._handlers]

    def _handler_for(self, provider: Provider) -> ProviderHandler:
        handler = self._handlers.get(provider)
        if handler is None:
            raise UnsupportedProviderError(provider.value)
        return handler

    def _resolve_api_key(self, provider: Provider, supplied: Optional[str]) -> str:
        if supplied:
            return supplied
        fallback = self.config.default_api_key(provider)
        if fallback:
            LOGGER.debug("Using server-held API key for provider=%s", provider.value)
            return fallback
        label = PROVIDER_PROFILES[provider].api_key_label
        raise ConfigurationError(f"API key not configured. Provide a {label} or set one on the server.")

    def _resolve_model(self, provider: Provider, supplied: Optional[str]) -> str:
        model = supplied or PROVIDER_PROFILES[provider].default_model
        if not model:
            raise ValidationError(f"A model is required for provider {provider.value}", code="missing_model")
        return model

    def prepare(self, request: GenerationRequest) -> tuple[Provider, ProviderCall]:
        """Validate a request and resolve everything needed for the outbound call."""
        if not request.user_query or not request.system_prompt:
            raise ValidationError("Missing required parameters", code="missing_parameters")
        provider = resolve_provider(request.provider)
        self._handler_for(provider)
        call = ProviderCall(
            user_query=request.user_query,
            system_prompt=request.system_prompt,
            model=self._resolve_model(provider, request.model),
            api_key=self._resolve_api_key(provider, request.api_key),
        )
        return provider, call

    async def handle(self, request: GenerationRequest) -> GenerationResult:
        """Produce a structured result or raise a :class:`GatewayError`."""
        start = perf_counter()
        label = provider_label(request.provider)
        model = request.model
        call: Optional[ProviderCall] = None
        try:
            provider, call = self.prepare(request)
            model = call.model
            result = await self._handler_for(provider).handle(call)
        except asyncio.CancelledError:
            raise
        except GatewayError as exc:
            LOGGER.warning(
                "Generation failed provider=%s model=%s code=%s: %s",
                label,
                model,
                exc.code,
                exc.message,
            )
            self._record(label, model, "error", start, call, exc)
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected gateway exception for provider=%s", label)
            error = TerminalUpstreamError(
                "Unexpected provider error",
                code="unhandled_error",
                details={"exception_type": type(exc).__name__},
            )
            self._record(label, model, "error", start, call, error)
            raise error from exc

        self._record(label, model, "success", start, call)
        return result

    async def list_models(self, provider_value: str, api_key: Optional[str] = None) -> List[Model]:
        provider = resolve_provider(provider_value)
        handler = self._handler_for(provider)
        if PROVIDER_PROFILES[provider].has_remote_models:
            api_key = api_key or self.config.default_api_key(provider)
        return await handler.list_models(api_key)

    async def aclose(self) -> None:
        for handler in self._handlers.values():
            if hasattr(handler, "aclose"):
                try:
                    await handler.aclose()
                except Exception:  # pragma: no cover - handler cleanup best-effort
                    LOGGER.debug("Handler cleanup failed", exc_info=True)

    def _record(
        self,
        provider: str,
        model: Optional[str],
        status: str,
        start: float,
        call: Optional[ProviderCall],
        error: Optional[GatewayError] = None,
    ) -> None:
        self._metrics.record(
            GenerationEvent.build(
                provider=provider,
                model=model,
                status=status,
                duration_ms=(perf_counter() - start) * 1000,
                retry_state=call.retry_state if call is not None else None,
                retryable=error.retryable if error else None,
                error_code=error.code if error else None,
            )
        )
