"""OpenRouter provider adapter (OpenAI-compatible chat completions)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncOpenAI,
)

from ..errors import TerminalUpstreamError, TransientUpstreamError
from ..models import GenerationResult, Model
from ..retry import Retrier, RetriesExhausted, is_retryable_status
from .base import ProviderCall, ProviderHandler, parse_structured_output

LOGGER = logging.getLogger("mom_followup.providers.openrouter")

MIN_CONTEXT_LENGTH = 8000


def _build_messages(call: ProviderCall) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": call.system_prompt},
        {"role": "user", "content": call.user_query},
    ]


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, APIStatusError):
        return is_retryable_status(exc.status_code)
    return isinstance(exc, APIConnectionError)


def _translate(exc: APIError) -> Exception:
    status_code = getattr(exc, "status_code", None)
    details = {"status_code": status_code}
    if _is_retryable(exc):
        code = "network_error" if status_code is None else "upstream_unavailable"
        return TransientUpstreamError(str(exc), code=code, details=details)
    return TerminalUpstreamError(f"API Error ({status_code}): {exc}", details=details)


class OpenRouterHandler(ProviderHandler):
    """Adapter for the OpenRouter chat completions API."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float,
        retrier: Optional[Retrier] = None,
        client_factory=None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._retrier = retrier or Retrier(logger=LOGGER, label="OpenRouter call")
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> AsyncOpenAI:
        # Retries are owned by the Retrier, not the SDK.
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self._base_url,
            timeout=self._timeout,
            max_retries=0,
        )

    async def _attempt(self, client: Any, call: ProviderCall):
        try:
            return await client.chat.completions.create(
                model=call.model,
                messages=_build_messages(call),
                response_format={"type": "json_object"},
            )
        except APIError as exc:
            raise _translate(exc) from exc

    async def handle(self, call: ProviderCall) -> GenerationResult:
        LOGGER.info("Calling OpenRouter model=%s", call.model)
        client = self._client_factory(call.api_key)
        try:
            response = await self._retrier.run(lambda: self._attempt(client, call), state=call.retry_state)
        except RetriesExhausted as exc:
            raise TransientUpstreamError(
                f"API call failed after {exc.state.attempts_made} retries: {exc.last_error}",
                code="retries_exhausted",
                details={"attempts": exc.state.attempts_made},
            ) from exc
        finally:
            await client.close()

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise TerminalUpstreamError("upstream returned no content", code="no_content")
        content = getattr(choices[0].message, "content", None)
        return parse_structured_output(content)

    async def list_models(self, api_key: Optional[str]) -> List[Model]:
        """List paid models with at least an 8k context window, sorted by name."""
        if not api_key:
            raise TerminalUpstreamError("API key required to fetch models", code="missing_api_key")
        client = self._client_factory(api_key)
        try:
            page = await client.models.list()
        except APIError as exc:
            raise _translate(exc) from exc
        finally:
            await client.close()

        models: List[Model] = []
        for item in page.data:
            context_length = getattr(item, "context_length", None) or 0
            if "free" in item.id or context_length < MIN_CONTEXT_LENGTH:
                continue
            models.append(
                Model(
                    id=item.id,
                    display_name=getattr(item, "name", None) or item.id,
                    context_length=context_length,
                )
            )
        return sorted(models, key=lambda model: model.display_name)
