"""Static provider table keyed by ProviderName."""

from typing import Dict, Iterable, List, Optional

from ..errors import ValidationError
from .base import BridgeProvider, ProviderName
from .jupiter import JupiterProvider
from .lifi import LiFiProvider
from .maya import MayaProvider
from .relay import RelayProvider


class ProviderRegistry:
    def __init__(self, providers: Iterable[BridgeProvider]):
        self._providers: Dict[str, BridgeProvider] = {}
        for provider in providers:
            self._providers[ProviderName(provider.name).value] = provider

    def get(self, name: str) -> BridgeProvider:
        """
        Raises:
            ValidationError: unknown or unregistered provider
        """
        provider = self._providers.get(name)
        if provider is None:
            raise ValidationError(f"Unknown provider: {name}")
        return provider

    def find(self, name: str) -> Optional[BridgeProvider]:
        return self._providers.get(name)

    def all(self) -> List[BridgeProvider]:
        return list(self._providers.values())

    def quote_providers(self) -> List[BridgeProvider]:
        """Configured providers that take part in the quote fan-out."""
        return [
            provider
            for provider in self._providers.values()
            if getattr(provider, "quotes_routes", True) and provider.is_configured()
        ]


def default_providers() -> List[BridgeProvider]:
    return [
        LiFiProvider(),
        RelayProvider(),
        MayaProvider(),
        JupiterProvider(),
    ]


_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """Get the singleton provider registry."""
    global _registry
    if _registry is None:
        _registry = ProviderRegistry(default_providers())
    return _registry
