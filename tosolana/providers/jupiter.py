"""Jupiter swap API, used for the Solana-side swap appended to SOL routes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.bridge.models import QuoteRequest, Route, SolanaTxRequest, TxRequest
from ..core.chain_types import WRAPPED_SOL_MINT
from ..errors import ProviderError, ProviderUnsupportedError
from .base import BridgeProvider, ProviderName, StepTxContext
from .http import request_json

logger = logging.getLogger(__name__)


class JupiterQuote(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    input_mint: str = Field(..., alias="inputMint")
    output_mint: str = Field(..., alias="outputMint")
    in_amount: str = Field(..., alias="inAmount")
    out_amount: str = Field(..., alias="outAmount")
    other_amount_threshold: Optional[str] = Field(None, alias="otherAmountThreshold")
    slippage_bps: int = Field(..., alias="slippageBps")


class JupiterProvider(BridgeProvider):
    """
    Solana DEX aggregation. Never quotes cross-chain routes by itself; it only
    supplies composed swap steps (tagged ``provider="jupiter"``) and their
    transactions.
    """

    name = ProviderName.JUPITER
    # Excluded from the quote fan-out
    quotes_routes = False

    def is_configured(self) -> bool:
        return settings.enable_jupiter_swap

    async def get_quotes(self, request: QuoteRequest) -> List[Route]:
        raise ProviderUnsupportedError(self.name.value, "Jupiter only composes Solana-side swaps")

    async def get_quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: str,
        slippage_bps: int,
    ) -> Optional[JupiterQuote]:
        """Best quote, or None when Jupiter has no route or is unavailable."""
        try:
            data = await request_json(
                self.name.value,
                "GET",
                settings.jupiter_quote_url,
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": amount,
                    "slippageBps": str(slippage_bps),
                    "onlyDirectRoutes": "false",
                },
                timeout_s=self.timeout_s,
                max_retries=self.max_retries,
                transport=self.transport,
            )
        except ProviderError as exc:
            logger.warning(f"Jupiter quote failed: {exc}")
            return None

        # v6 returns the quote itself; older deployments wrap it in {"data": [...]}
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            data = data["data"][0] if data["data"] else None
        if not data:
            return None
        try:
            return JupiterQuote.model_validate(data)
        except ValidationError:
            logger.warning("Jupiter quote response did not match the expected schema")
            return None

    async def get_swap_transaction(self, quote: JupiterQuote, user_public_key: str) -> str:
        data = await request_json(
            self.name.value,
            "POST",
            settings.jupiter_swap_url,
            json={
                "quoteResponse": quote.model_dump(by_alias=True),
                "userPublicKey": user_public_key,
                "wrapAndUnwrapSol": True,
            },
            headers={"content-type": "application/json"},
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            transport=self.transport,
        )
        swap_tx = data.get("swapTransaction") if isinstance(data, dict) else None
        if not swap_tx:
            raise ProviderError(self.name.value, "Jupiter swap transaction missing")
        return swap_tx

    async def get_step_tx(self, route_id: str, step_index: int, context: StepTxContext) -> TxRequest:
        metadata: Dict[str, Any] = context.step.metadata or {}
        output_mint = metadata.get("outputMint")
        amount_in = metadata.get("amountIn")
        if not output_mint or not amount_in:
            raise ProviderError(self.name.value, "Swap step is missing its quote parameters")

        quote = await self.get_quote(
            input_mint=metadata.get("inputMint", WRAPPED_SOL_MINT),
            output_mint=output_mint,
            amount=str(amount_in),
            slippage_bps=int(metadata.get("slippageBps", round(context.execution.slippage * 100))),
        )
        if quote is None:
            raise ProviderError(self.name.value, "Jupiter quote unavailable")

        swap_tx = await self.get_swap_transaction(quote, context.solana_address)
        return SolanaTxRequest(rpc=settings.solana_rpc_url, serialized_tx_base64=swap_tx)
