"""Quote aggregation, route models and Jupiter composition."""

from .aggregator import QuoteAggregator, get_quote_aggregator, rank_routes
from .compose import JupiterComposer
from .models import QuoteRequest, QuoteResult, Route, RouteStep, TxRequest

__all__ = [
    "QuoteAggregator",
    "get_quote_aggregator",
    "rank_routes",
    "JupiterComposer",
    "QuoteRequest",
    "QuoteResult",
    "Route",
    "RouteStep",
    "TxRequest",
]
