"""Append a Jupiter swap to routes that bridge into native SOL."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional

from ...config import settings
from ..chain_types import WRAPPED_SOL_MINT, ChainKind, is_sol_token
from .models import QuoteRequest, Route, RouteStep, TokenAmount

if TYPE_CHECKING:
    from ...providers.jupiter import JupiterProvider

logger = logging.getLogger(__name__)

JUPITER_PROVIDER = "jupiter"
WARNING_COMPOSED = "Includes Jupiter swap on Solana"
WARNING_UNAVAILABLE = "Jupiter swap unavailable; output remains SOL"


class JupiterComposer:
    def __init__(self, jupiter: "JupiterProvider", enabled: Optional[bool] = None):
        self.jupiter = jupiter
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return settings.enable_jupiter_swap if self._enabled is None else self._enabled

    async def compose(self, routes: List[Route], request: QuoteRequest) -> List[Route]:
        if not self.enabled or is_sol_token(request.destination_token_address):
            return routes
        slippage_bps = round(request.slippage * 100)
        return list(await asyncio.gather(*(self._compose_one(r, request, slippage_bps) for r in routes)))

    def _should_compose(self, route: Route, destination: str) -> bool:
        if not route.is_executable:
            return False
        if any(step.provider == JUPITER_PROVIDER for step in route.steps):
            return False
        if route.estimated_output.token == destination:
            return False
        return route.estimated_output.token == "SOL"

    async def _compose_one(self, route: Route, request: QuoteRequest, slippage_bps: int) -> Route:
        destination = request.destination_token_address
        if not self._should_compose(route, destination):
            return route

        amount_in = route.estimated_output.amount
        try:
            quote = await self.jupiter.get_quote(
                input_mint=WRAPPED_SOL_MINT,
                output_mint=destination,
                amount=amount_in,
                slippage_bps=slippage_bps,
            )
        except Exception as exc:
            logger.warning(f"Jupiter composition failed for {route.provider}/{route.route_id}: {exc}")
            quote = None

        warnings = list(route.warnings or [])
        if quote is None:
            warnings.append(WARNING_UNAVAILABLE)
            return route.model_copy(update={"warnings": warnings})

        swap_step = RouteStep(
            chain_type=ChainKind.SOLANA,
            description="Swap via Jupiter to target SPL",
            provider=JUPITER_PROVIDER,
            metadata={
                "inputMint": WRAPPED_SOL_MINT,
                "outputMint": destination,
                "amountIn": amount_in,
                "slippageBps": slippage_bps,
            },
        )
        warnings.append(WARNING_COMPOSED)
        return route.model_copy(
            update={
                "steps": [*route.steps, swap_step],
                "estimated_output": TokenAmount(token=destination, amount=quote.out_amount),
                "warnings": warnings,
            }
        )
