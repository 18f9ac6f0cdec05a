"""Google Gemini provider adapter."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import TerminalUpstreamError, TransientUpstreamError
from ..models import PROVIDER_PROFILES, GenerationResult, Model, Provider
from ..retry import Retrier, RetriesExhausted, is_retryable_status
from .base import RESULT_SCHEMA, ProviderCall, ProviderHandler, parse_structured_output

LOGGER = logging.getLogger("mom_followup.providers.gemini")

# Sent as a header so the key never appears in logged request URLs.
API_KEY_HEADER = "x-goog-api-key"


def _build_payload(call: ProviderCall) -> Dict[str, Any]:
    return {
        "contents": [{"parts": [{"text": call.user_query}]}],
        "systemInstruction": {"parts": [{"text": call.system_prompt}]},
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESULT_SCHEMA,
        },
    }


def _first_part_text(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return None
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    return text if isinstance(text, str) else None


class GeminiHandler(ProviderHandler):
    """Adapter for the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float,
        retrier: Optional[Retrier] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._retrier = retrier or Retrier(logger=LOGGER, label="Gemini call")

    def _endpoint(self, model: str) -> str:
        return f"{self._base_url}/models/{model}:generateContent"

    async def _attempt(self, call: ProviderCall) -> Any:
        try:
            response = await self._client.post(
                self._endpoint(call.model),
                headers={API_KEY_HEADER: call.api_key},
                json=_build_payload(call),
            )
        except httpx.TransportError as exc:
            raise TransientUpstreamError(
                f"{type(exc).__name__}: {exc}",
                code="network_error",
            ) from exc

        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                raise TerminalUpstreamError("upstream returned invalid JSON", code="invalid_json") from exc

        details = {"status_code": response.status_code}
        message = f"Status {response.status_code} - {response.text}"
        if is_retryable_status(response.status_code):
            raise TransientUpstreamError(message, details=details)
        raise TerminalUpstreamError(f"API Error ({response.status_code}): {response.text}", details=details)

    async def handle(self, call: ProviderCall) -> GenerationResult:
        LOGGER.info("Calling Gemini model=%s", call.model)
        try:
            body = await self._retrier.run(lambda: self._attempt(call), state=call.retry_state)
        except RetriesExhausted as exc:
            raise TransientUpstreamError(
                f"API call failed after {exc.state.attempts_made} retries: {exc.last_error}",
                code="retries_exhausted",
                details={"attempts": exc.state.attempts_made},
            ) from exc
        return parse_structured_output(_first_part_text(body))

    async def list_models(self, api_key: Optional[str]) -> List[Model]:
        return list(PROVIDER_PROFILES[Provider.GEMINI].models)

    async def aclose(self) -> None:
        await self._client.aclose()
