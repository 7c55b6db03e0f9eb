"""Bridge provider adapters."""

from .base import BridgeProvider, ProviderName, StepTxContext
from .registry import ProviderRegistry, get_provider_registry

__all__ = [
    "BridgeProvider",
    "ProviderName",
    "StepTxContext",
    "ProviderRegistry",
    "get_provider_registry",
]
