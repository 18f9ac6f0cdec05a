"""MOM follow-up - turn meeting notes into WhatsApp follow-ups through an LLM gateway."""

from .config import ConfigError, DispatcherConfig, GatewayConfig  # noqa: F401
from .dispatcher import RequestDispatcher  # noqa: F401
from .gateway import ProviderGateway  # noqa: F401
from .models import GenerationRequest, GenerationResult  # noqa: F401

__all__ = [
    "ConfigError",
    "DispatcherConfig",
    "GatewayConfig",
    "GenerationRequest",
    "GenerationResult",
    "ProviderGateway",
    "RequestDispatcher",
    "__version__",
]

__version__ = "0.1.0"
