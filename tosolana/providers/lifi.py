"""LI.FI advanced routes integration (EVM -> Solana)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.bridge.models import (
    EvmTxRequest,
    Fee,
    QuoteRequest,
    Route,
    RouteStep,
    SolanaTxRequest,
    TokenAmount,
    TxRequest,
)
from ..core.chain_types import SOL_NATIVE_ADDRESS, ChainKind, is_sol_token
from ..errors import ProviderError, ProviderUnsupportedError
from .base import BridgeProvider, ProviderName, StepTxContext
from .http import request_json

logger = logging.getLogger(__name__)

LIFI_SOLANA_CHAIN_ID = 1151111081099710
# Solana's LI.FI chain id is far above any EVM chain id
_EVM_CHAIN_ID_CEILING = 1_000_000_000
MAX_ROUTES = 5


class _LiFiToken(BaseModel):
    model_config = ConfigDict(extra="allow")

    symbol: str
    address: Optional[str] = None


class _LiFiCost(BaseModel):
    model_config = ConfigDict(extra="allow")

    amount: str
    token: _LiFiToken


class _LiFiAction(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_chain_id: int = Field(..., alias="fromChainId")
    to_chain_id: int = Field(..., alias="toChainId")
    from_token: _LiFiToken = Field(..., alias="fromToken")
    to_token: _LiFiToken = Field(..., alias="toToken")


class _LiFiEstimate(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    gas_costs: List[_LiFiCost] = Field(default_factory=list, alias="gasCosts")
    fee_costs: List[_LiFiCost] = Field(default_factory=list, alias="feeCosts")
    execution_duration: Optional[float] = Field(None, alias="executionDuration")


class _LiFiStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    action: _LiFiAction
    estimate: _LiFiEstimate


class _LiFiRoute(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    steps: List[_LiFiStep]
    to_amount_min: str = Field(..., alias="toAmountMin")
    to_token: _LiFiToken = Field(..., alias="toToken")
    tags: List[str] = Field(default_factory=list)


class _LiFiRoutesResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    routes: List[_LiFiRoute] = Field(default_factory=list)


class _LiFiTransactionRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    to: Optional[str] = None
    data: Optional[str] = None
    value: Optional[str] = None
    chain_id: Optional[int] = Field(None, alias="chainId")


class _LiFiStepTransaction(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    transaction_request: Optional[_LiFiTransactionRequest] = Field(None, alias="transactionRequest")


def _is_evm_chain(chain_id: int) -> bool:
    return chain_id < _EVM_CHAIN_ID_CEILING


class LiFiProvider(BridgeProvider):
    """https://li.quest advanced routes API"""

    name = ProviderName.LIFI

    def __init__(self, base_url: Optional[str] = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.base_url = (base_url or settings.lifi_base_url).rstrip("/")

    def is_configured(self) -> bool:
        return settings.has_lifi

    def _headers(self) -> Dict[str, str]:
        headers = {"content-type": "application/json"}
        if settings.lifi_api_key:
            headers["x-lifi-api-key"] = settings.lifi_api_key
        return headers

    def _routes_payload(self, request: QuoteRequest) -> Dict[str, Any]:
        to_token = SOL_NATIVE_ADDRESS if is_sol_token(request.destination_token_address) else request.destination_token_address
        return {
            "fromChainId": request.source_chain_id,
            "toChainId": LIFI_SOLANA_CHAIN_ID,
            "fromTokenAddress": request.source_token_address,
            "toTokenAddress": to_token,
            "fromAmount": request.source_amount,
            "fromAddress": request.source_address,
            "toAddress": request.solana_address,
            "options": {
                "integrator": settings.lifi_integrator or "tosolana",
                "order": "RECOMMENDED",
                "slippage": request.slippage / 100,
            },
        }

    async def _fetch_routes(self, request: QuoteRequest) -> List[_LiFiRoute]:
        data = await request_json(
            self.name.value,
            "POST",
            f"{self.base_url}/advanced/routes",
            json=self._routes_payload(request),
            headers=self._headers(),
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            transport=self.transport,
        )
        try:
            return _LiFiRoutesResponse.model_validate(data).routes
        except ValidationError as exc:
            raise ProviderError(self.name.value, f"Unexpected routes response: {exc.error_count()} errors") from exc

    async def get_quotes(self, request: QuoteRequest) -> List[Route]:
        if request.chain_kind != ChainKind.EVM:
            raise ProviderUnsupportedError(self.name.value)

        routes = await self._fetch_routes(request)
        return [self._normalize(route) for route in routes[:MAX_ROUTES]]

    def _normalize(self, route: _LiFiRoute) -> Route:
        fees: List[Fee] = []
        eta = 0.0
        steps: List[RouteStep] = []
        for step in route.steps:
            for cost in (*step.estimate.gas_costs, *step.estimate.fee_costs):
                fees.append(Fee(token=cost.token.symbol, amount=cost.amount))
            eta += step.estimate.execution_duration or 0
            from_chain = step.action.from_chain_id
            steps.append(
                RouteStep(
                    chain_type=ChainKind.EVM if _is_evm_chain(from_chain) else ChainKind.SOLANA,
                    chain_id=from_chain,
                    description=f"{step.type}: {step.action.from_token.symbol} → {step.action.to_token.symbol}",
                    provider=self.name.value,
                )
            )

        return Route(
            provider=self.name.value,
            route_id=route.id,
            steps=steps,
            estimated_output=TokenAmount(token=route.to_token.symbol, amount=route.to_amount_min),
            fees=fees,
            eta_seconds=int(eta) if eta > 0 else None,
            warnings=["Includes gas refuel step"] if "REFUEL" in route.tags else None,
        )

    async def get_step_tx(self, route_id: str, step_index: int, context: StepTxContext) -> TxRequest:
        request = context.quote_request()
        routes = await self._fetch_routes(request)
        route = next((r for r in routes if r.id == route_id), None)
        if route is None:
            raise ProviderError(self.name.value, f"Route {route_id} is no longer available")
        if step_index < 0 or step_index >= len(route.steps):
            raise ProviderError(self.name.value, f"Step {step_index} not found in route")

        step = route.steps[step_index]
        data = await request_json(
            self.name.value,
            "POST",
            f"{self.base_url}/advanced/stepTransaction",
            json={
                **step.model_dump(by_alias=True),
                "fromAddress": request.source_address,
                "toAddress": request.solana_address,
            },
            headers=self._headers(),
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            transport=self.transport,
        )
        try:
            tx = _LiFiStepTransaction.model_validate(data).transaction_request
        except ValidationError as exc:
            raise ProviderError(self.name.value, "Unexpected step transaction response") from exc
        if tx is None:
            raise ProviderError(self.name.value, "No transaction request in step response")

        from_chain = step.action.from_chain_id
        if _is_evm_chain(from_chain):
            if not tx.to:
                raise ProviderError(self.name.value, "Step transaction has no recipient")
            return EvmTxRequest(chain_id=tx.chain_id or from_chain, to=tx.to, data=tx.data, value=tx.value)

        if not tx.data:
            raise ProviderError(self.name.value, "No Solana transaction data in step response")
        return SolanaTxRequest(rpc=settings.solana_rpc_url, serialized_tx_base64=tx.data)
