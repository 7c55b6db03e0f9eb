"""Maya Protocol swaps for Bitcoin -> native SOL.

THORChain itself has no Solana pool, so BTC -> SOL goes through Maya's
THORChain-compatible quote API. The provider keeps the ``thorchain`` name that
clients already know.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.bridge.models import (
    BitcoinInputToSign,
    BitcoinTxRequest,
    Fee,
    QuoteRequest,
    Route,
    RouteStep,
    TokenAmount,
    TxRequest,
)
from ..core.chain_types import ChainKind
from ..errors import ProviderError, ProviderErrorKind, ProviderUnsupportedError
from .base import BridgeProvider, ProviderName, StepTxContext
from .http import request_json

logger = logging.getLogger(__name__)

BTC_ASSET = "BTC.BTC"
SOL_ASSET = "SOL.SOL"


class _MayaFees(BaseModel):
    model_config = ConfigDict(extra="ignore")

    liquidity: str = "0"
    outbound: str = "0"


class _MayaQuote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    inbound_address: str
    inbound_confirmation_seconds: int = 0
    outbound_delay_seconds: int = 0
    fees: _MayaFees = Field(default_factory=_MayaFees)
    expiry: int
    warning: Optional[str] = None
    dust_threshold: str = "0"
    recommended_min_amount_in: str = "0"
    memo: str
    expected_amount_out: str


class MayaProvider(BridgeProvider):
    name = ProviderName.THORCHAIN

    def __init__(self, base_url: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.maya_base_url).rstrip("/")

    def is_configured(self) -> bool:
        # Off in production unless explicitly enabled
        if settings.is_production:
            return settings.enable_maya
        return True

    async def _quote(self, amount_sats: str, destination: str) -> _MayaQuote:
        params: Dict[str, str] = {
            "from_asset": BTC_ASSET,
            "to_asset": SOL_ASSET,
            "amount": amount_sats,
            "destination": destination,
            "affiliate": settings.maya_affiliate,
            "affiliate_bps": str(settings.maya_affiliate_bps),
        }
        try:
            data = await request_json(
                self.name.value,
                "GET",
                f"{self.base_url}/mayachain/quote/swap",
                params=params,
                timeout_s=self.timeout_s,
                max_retries=self.max_retries,
                transport=self.transport,
            )
        except ProviderError as exc:
            if exc.kind == ProviderErrorKind.TRANSIENT:
                raise ProviderError(
                    self.name.value,
                    "Maya Protocol rate limit exceeded. Please try again in a few seconds.",
                    ProviderErrorKind.TRANSIENT,
                ) from exc
            raise

        try:
            quote = _MayaQuote.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(self.name.value, "Unexpected Maya quote response") from exc

        if time.time() > quote.expiry:
            raise ProviderError(self.name.value, "Quote expired. Please request a new quote.")
        return quote

    async def get_quotes(self, request: QuoteRequest) -> List[Route]:
        if request.chain_kind != ChainKind.BITCOIN:
            raise ProviderUnsupportedError(self.name.value)

        quote = await self._quote(request.source_amount, request.solana_address)
        warnings = [
            "Maya Protocol: BTC -> SOL direct swap",
            f"Min amount: {quote.recommended_min_amount_in} sats",
            f"Dust threshold: {quote.dust_threshold} sats",
            "Do not send from an exchange",
        ]
        if quote.warning:
            warnings.append(quote.warning)

        return [
            Route(
                provider=self.name.value,
                route_id=f"maya-{uuid4().hex[:12]}",
                steps=[
                    RouteStep(
                        chain_type=ChainKind.BITCOIN,
                        chain_id="bitcoin",
                        description="Send BTC to Maya vault for SOL swap",
                        provider=self.name.value,
                    )
                ],
                estimated_output=TokenAmount(token="SOL", amount=quote.expected_amount_out),
                fees=[
                    Fee(token="BTC", amount=quote.fees.liquidity),
                    Fee(token="SOL", amount=quote.fees.outbound),
                ],
                eta_seconds=quote.inbound_confirmation_seconds + quote.outbound_delay_seconds,
                warnings=warnings,
            )
        ]

    async def get_step_tx(self, route_id: str, step_index: int, context: StepTxContext) -> TxRequest:
        if step_index != 0:
            raise ProviderError(self.name.value, "Maya route only has one executable step")

        # Vault addresses rotate, so always quote again for a fresh inbound address
        amount = context.execution.source_amount
        quote = await self._quote(amount, context.solana_address)
        return BitcoinTxRequest(
            psbt_base64="",
            inputs_to_sign=[BitcoinInputToSign(index=0, address=context.source_address)],
            to_address=quote.inbound_address,
            amount=amount,
            memo=quote.memo,
        )
