"""Data types shared by the dispatcher and the gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


class Provider(str, Enum):
    """Upstream LLM vendors the gateway can talk to."""

    GEMINI = "gemini"
    OPENROUTER = "openrouter"


@dataclass
class GenerationRequest:
    """Normalized request sent from the dispatcher to the gateway."""

    user_query: str
    system_prompt: str
    provider: str
    model: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "GenerationRequest":
        return cls(
            user_query=payload.get("userQuery") or "",
            system_prompt=payload.get("systemPrompt") or "",
            provider=payload.get("provider") or Provider.GEMINI.value,
            model=payload.get("model") or None,
            api_key=payload.get("apiKey") or None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "userQuery": self.user_query,
            "systemPrompt": self.system_prompt,
            "provider": self.provider,
            "model": self.model,
            "apiKey": self.api_key,
        }


class MalformedResult(ValueError):
    """Raised when a payload does not satisfy the structured-output contract."""


@dataclass(frozen=True)
class GenerationResult:
    """Structured output: the WhatsApp message plus the sender's own to-dos."""

    whatsapp_message: str
    action_items: List[str]

    @classmethod
    def from_payload(cls, payload: Any) -> "GenerationResult":
        """Strictly parse ``{whatsappMessage, actionItems}``.

        Missing or mistyped fields are rejected rather than defaulted, so a
        partially parsed object never leaves this function.
        """
        if not isinstance(payload, dict):
            raise MalformedResult(f"expected a JSON object, got {type(payload).__name__}")
        if "whatsappMessage" not in payload:
            raise MalformedResult("missing 'whatsappMessage'")
        if "actionItems" not in payload:
            raise MalformedResult("missing 'actionItems'")

        message = payload["whatsappMessage"]
        items = payload["actionItems"]
        if not isinstance(message, str):
            raise MalformedResult("'whatsappMessage' must be a string")
        if not isinstance(items, list):
            raise MalformedResult("'actionItems' must be an array")
        if not all(isinstance(item, str) for item in items):
            raise MalformedResult("'actionItems' must contain only strings")
        return cls(whatsapp_message=message, action_items=list(items))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "whatsappMessage": self.whatsapp_message,
            "actionItems": list(self.action_items),
        }


@dataclass(frozen=True)
class Model:
    """A model selectable for a provider."""

    id: str
    display_name: str
    context_length: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.display_name, "context": self.context_length}


@dataclass(frozen=True)
class ProviderProfile:
    """Static metadata describing a provider to settings screens and the gateway."""

    provider: Provider
    display_name: str
    api_key_label: str
    api_key_help: str
    models: Tuple[Model, ...] = ()
    models_endpoint: Optional[str] = None
    default_model: Optional[str] = None

    @property
    def has_remote_models(self) -> bool:
        return self.models_endpoint is not None


PROVIDER_PROFILES: Mapping[Provider, ProviderProfile] = MappingProxyType(
    {
        Provider.GEMINI: ProviderProfile(
            provider=Provider.GEMINI,
            display_name="Google Gemini",
            api_key_label="Gemini API Key",
            api_key_help="Get your API key from Google AI Studio",
            models=(
                Model("gemini-2.0-flash-exp", "Gemini 2.0 Flash (Experimental)"),
                Model("gemini-1.5-pro", "Gemini 1.5 Pro"),
                Model("gemini-1.5-flash", "Gemini 1.5 Flash"),
            ),
            default_model="gemini-2.0-flash-exp",
        ),
        Provider.OPENROUTER: ProviderProfile(
            provider=Provider.OPENROUTER,
            display_name="OpenRouter",
            api_key_label="OpenRouter API Key",
            api_key_help="Get your API key from OpenRouter.ai",
            models_endpoint="https://openrouter.ai/api/v1/models",
        ),
    }
)
