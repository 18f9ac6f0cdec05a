"""Provider registry exports."""

from .base import ProviderCall, ProviderHandler, parse_structured_output
from .gemini import GeminiHandler
from .openrouter import OpenRouterHandler

__all__ = [
    "ProviderCall",
    "ProviderHandler",
    "parse_structured_output",
    "GeminiHandler",
    "OpenRouterHandler",
]
