from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.bridge.models import QuoteRequest, Route, RouteStep, TxRequest
from ..core.session.models import ExecutionContext


class ProviderName(str, Enum):
    LIFI = "lifi"
    THORCHAIN = "thorchain"
    JUPITER = "jupiter"
    RELAY = "relay"


@dataclass
class StepTxContext:
    """Server-side inputs for building one step's transaction.

    Built from the stored session only; nothing here comes from the client
    request that asks for the transaction.
    """

    execution: ExecutionContext
    source_address: str
    solana_address: str
    route: Route
    step: RouteStep

    def quote_request(self) -> QuoteRequest:
        return self.execution.to_quote_request(self.source_address, self.solana_address)


class BridgeProvider(ABC):
    """Base bridge/swap provider interface"""

    name: ProviderName
    timeout_s: float = 20.0

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Tests inject httpx.MockTransport here
        self.transport = transport
        self.timeout_s = settings.provider_timeout_seconds
        self.max_retries = settings.provider_max_retries

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the credentials/flags this provider needs are present"""

    @abstractmethod
    async def get_quotes(self, request: QuoteRequest) -> List[Route]:
        """
        Return normalized routes for the request.

        Raises:
            ProviderUnsupportedError: provider has nothing for this chain/token
            ProviderError: the call failed
        """

    @abstractmethod
    async def get_step_tx(self, route_id: str, step_index: int, context: StepTxContext) -> TxRequest:
        """Return the unsigned transaction for one route step"""

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "configured" if self.is_configured() else "unavailable",
            "provider": self.name.value,
        }
