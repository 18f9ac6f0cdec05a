"""Provider abstractions for LLM integrations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..errors import TerminalUpstreamError
from ..models import GenerationResult, MalformedResult, Model
from ..retry import RetryState

# JSON schema forced on the upstream model where the provider supports it.
RESULT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "whatsappMessage": {"type": "STRING"},
        "actionItems": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["whatsappMessage", "actionItems"],
}


@dataclass
class ProviderCall:
    """A request after routing and credential resolution."""

    user_query: str
    system_prompt: str
    model: str
    api_key: str = field(repr=False)
    retry_state: RetryState = field(default_factory=RetryState, repr=False)


class ProviderHandler(Protocol):
    """Protocol describing provider behaviour."""

    async def handle(self, call: ProviderCall) -> GenerationResult:
        """Produce a structured result for the given call."""

    async def list_models(self, api_key: Optional[str]) -> List[Model]:
        """Return the models selectable for this provider."""

    async def aclose(self) -> None:  # pragma: no cover - optional hook
        """Optional async cleanup hook."""


def parse_structured_output(text: Optional[str]) -> GenerationResult:
    """Turn the model's text into a result or raise a terminal error."""
    if not isinstance(text, str) or not text:
        raise TerminalUpstreamError("upstream returned no content", code="no_content")
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise TerminalUpstreamError("upstream returned invalid JSON", code="invalid_json") from exc
    try:
        return GenerationResult.from_payload(payload)
    except MalformedResult as exc:
        raise TerminalUpstreamError(
            f"upstream response violates the result contract: {exc}",
            code="contract_violation",
        ) from exc
