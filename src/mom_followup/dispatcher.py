"""Caller-side request dispatcher for the generation gateway."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import DispatcherConfig
from .errors import GenerationError, MalformedResultError
from .models import GenerationRequest, GenerationResult, MalformedResult, Model
from .retry import Retrier, RetriesExhausted, SleepFn, is_retryable_status
from .stores import SettingsStore

LOGGER = logging.getLogger("mom_followup.dispatcher")


class _DeliveryFailure(Exception):
    """A network fault or a 429/5xx answer from the gateway."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return f"API Error: {response.status_code} {response.reason_phrase}"


def _error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "gateway_error"
    if isinstance(body, dict) and isinstance(body.get("code"), str):
        return body["code"]
    return "gateway_error"


class RequestDispatcher:
    """Send generation requests to the gateway with bounded exponential backoff."""

    def __init__(
        self,
        *,
        config: DispatcherConfig,
        settings: SettingsStore,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self.config = config
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout)
        self._retrier = Retrier(config.retry, sleep=sleep, logger=LOGGER, label="Gateway call")

    async def build_request(self, query: str, system_prompt: str) -> GenerationRequest:
        settings = await self._settings.get()
        return GenerationRequest(
            user_query=query,
            system_prompt=system_prompt,
            provider=settings.provider,
            model=settings.model,
            api_key=settings.api_key or None,
        )

    async def generate(self, query: str, system_prompt: str) -> GenerationResult:
        """Return the structured result for ``query`` or raise :class:`GenerationError`."""
        if not query or not query.strip() or not system_prompt or not system_prompt.strip():
            raise GenerationError("invalid_request", "Missing required parameters")

        request = await self.build_request(query, system_prompt)
        payload = request.to_payload()
        LOGGER.info("Dispatching generation provider=%s model=%s", request.provider, request.model)

        try:
            response = await self._retrier.run(lambda: self._attempt(payload))
        except RetriesExhausted as exc:
            last = exc.last_error
            raise GenerationError(
                "retries_exhausted",
                f"call failed after retries: {last}",
                status_code=getattr(last, "status_code", None),
            ) from exc

        try:
            return GenerationResult.from_payload(response.json())
        except (ValueError, MalformedResult) as exc:
            raise MalformedResultError(f"malformed result from gateway: {exc}") from exc

    async def _attempt(self, payload: Dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(self.config.gateway_url, json=payload)
        except httpx.TransportError as exc:
            raise _DeliveryFailure(f"{type(exc).__name__}: {exc}") from exc

        if response.is_success:
            return response
        message = _error_message(response)
        if is_retryable_status(response.status_code):
            raise _DeliveryFailure(message, response.status_code)
        LOGGER.warning("Gateway rejected request status=%s: %s", response.status_code, message)
        raise GenerationError(_error_code(response), message, status_code=response.status_code)

    async def list_models(self, provider: str, api_key: Optional[str] = None) -> List[Model]:
        """Ask the gateway which models ``provider`` offers. Not retried."""
        headers = {"X-Api-Key": api_key} if api_key else {}
        url = f"{self.config.gateway_base_url}/models/{provider}"
        try:
            response = await self._client.get(url, headers=headers)
        except httpx.TransportError as exc:
            raise GenerationError("network_error", f"{type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise GenerationError(
                _error_code(response),
                f"Failed to fetch models: {_error_message(response)}",
                status_code=response.status_code,
            )
        return [
            Model(id=item["id"], display_name=item["name"], context_length=item.get("context"))
            for item in response.json()
        ]

    async def healthcheck(self) -> bool:
        try:
            response = await self._client.get(f"{self.config.gateway_base_url}/health")
        except httpx.TransportError as exc:
            LOGGER.warning("Healthcheck failed: %s", exc)
            return False
        return response.is_success

    async def aclose(self) -> None:
        await self._client.aclose()
