"""
Quote Aggregator

Fans a quote request out to every configured provider, isolates each
provider's failure, then merges and ranks the routes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

from ...config import settings
from ...errors import ConfigurationError, ProviderError, ProviderUnsupportedError
from .compose import JupiterComposer
from .models import QuoteRequest, QuoteResult, Route
from .numeric import parse_amount, sum_fee_amounts

if TYPE_CHECKING:
    from ...providers.base import BridgeProvider
    from ...providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

NO_PROVIDERS_MESSAGE = (
    "No bridge providers configured. Set LIFI_API_KEY / LIFI_INTEGRATOR, "
    "enable Relay or Maya in your .env file."
)


@dataclass
class _ProviderOutcome:
    provider: str
    routes: List[Route] = field(default_factory=list)
    error: Optional[str] = None


def route_sort_key(route: Route) -> Tuple:
    """Output descending, summed fees ascending, then provider and route id."""
    return (
        -parse_amount(route.estimated_output.amount),
        sum_fee_amounts(route.fees),
        route.provider,
        route.route_id,
    )


def rank_routes(routes: List[Route], limit: int) -> List[Route]:
    return sorted(routes, key=route_sort_key)[:limit]


class QuoteAggregator:
    def __init__(
        self,
        registry: "ProviderRegistry",
        composer: Optional[JupiterComposer] = None,
        timeout_s: Optional[float] = None,
        max_routes: Optional[int] = None,
    ):
        self.registry = registry
        self.composer = composer
        self.timeout_s = timeout_s or settings.provider_timeout_seconds
        self.max_routes = max_routes or settings.max_routes

    async def _quote_one(self, provider: "BridgeProvider", request: QuoteRequest) -> _ProviderOutcome:
        name = provider.name.value
        try:
            routes = await asyncio.wait_for(provider.get_quotes(request), timeout=self.timeout_s)
        except ProviderUnsupportedError:
            logger.debug(f"Provider {name} does not support this request")
            return _ProviderOutcome(provider=name)
        except asyncio.TimeoutError:
            logger.warning(f"Provider {name} timed out after {self.timeout_s}s")
            return _ProviderOutcome(provider=name, error=f"{name}: Request timed out")
        except ProviderError as exc:
            logger.warning(f"Provider {name} failed ({exc.kind.value}): {exc.message}")
            return _ProviderOutcome(provider=name, error=f"{name}: {exc.message}")
        except Exception as exc:
            # One adapter's bug must not take down the whole quote
            logger.exception(f"Provider {name} raised unexpectedly")
            return _ProviderOutcome(provider=name, error=f"{name}: {exc}")

        return _ProviderOutcome(provider=name, routes=list(routes))

    async def get_all_quotes(self, request: QuoteRequest) -> QuoteResult:
        providers = self.registry.quote_providers()
        if not providers:
            return QuoteResult(routes=[], errors=[ConfigurationError(NO_PROVIDERS_MESSAGE).message])

        outcomes = await asyncio.gather(*(self._quote_one(p, request) for p in providers))

        routes: List[Route] = []
        errors: List[str] = []
        for outcome in outcomes:
            routes.extend(outcome.routes)
            if outcome.error:
                errors.append(outcome.error)

        if self.composer is not None:
            routes = await self.composer.compose(routes, request)

        ranked = rank_routes(routes, self.max_routes)
        logger.info(
            f"Quoted {len(ranked)} routes from {len(providers)} providers "
            f"({len(errors)} errors)"
        )
        return QuoteResult(routes=ranked, errors=errors)


_quote_aggregator: Optional[QuoteAggregator] = None


def get_quote_aggregator() -> QuoteAggregator:
    """Get the singleton aggregator wired to the default registry and Jupiter composer."""
    global _quote_aggregator
    if _quote_aggregator is None:
        from ...providers.registry import get_provider_registry

        registry = get_provider_registry()
        jupiter = registry.find("jupiter")
        _quote_aggregator = QuoteAggregator(
            registry,
            composer=JupiterComposer(jupiter) if jupiter is not None else None,
        )
    return _quote_aggregator
