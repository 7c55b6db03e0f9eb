"""Async client for Relay's public bridge API (EVM -> Solana)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.bridge.models import (
    EvmTxRequest,
    Fee,
    QuoteRequest,
    Route,
    RouteStep,
    TokenAmount,
    TxRequest,
)
from ..core.chain_types import EVM_NATIVE_PLACEHOLDER, SOL_NATIVE_ADDRESS, ChainKind, is_sol_token
from ..errors import ProviderError, ProviderErrorKind, ProviderUnsupportedError
from .base import BridgeProvider, ProviderName, StepTxContext

logger = logging.getLogger(__name__)

RELAY_SOLANA_CHAIN_ID = 792703809
_EVM_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class _RelayCurrency(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str = ""


class _RelayAmount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: str = "0"
    currency: _RelayCurrency = Field(default_factory=_RelayCurrency)


class _RelayTxData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    to: str
    data: Optional[str] = None
    value: Optional[str] = None
    chain_id: int = Field(..., alias="chainId")


class _RelayStepItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: Optional[_RelayTxData] = None


class _RelayStep(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    kind: str = "transaction"
    description: str = ""
    request_id: Optional[str] = Field(None, alias="requestId")
    items: List[_RelayStepItem] = Field(default_factory=list)


class _RelayDetails(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    currency_out: _RelayAmount = Field(..., alias="currencyOut")
    time_estimate: Optional[int] = Field(None, alias="timeEstimate")


class _RelayQuote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    steps: List[_RelayStep]
    fees: Dict[str, _RelayAmount] = Field(default_factory=dict)
    details: _RelayDetails


class RelayProvider(BridgeProvider):
    """Thin wrapper around https://api.relay.link endpoints."""

    name = ProviderName.RELAY

    def __init__(self, *, base_url: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        configured = base_url or settings.relay_base_url
        if configured:
            self.base_urls: List[str] = [configured.rstrip("/")]
        else:
            self.base_urls = ["https://api.relay.link"]

    def is_configured(self) -> bool:
        return settings.enable_relay

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json, text/plain, */*",
            "content-type": "application/json",
            "user-agent": "ToSolanaRelayClient/1.0",
        }

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        last_error: Optional[Exception] = None

        for index, base_url in enumerate(self.base_urls):
            try:
                async with httpx.AsyncClient(
                    base_url=base_url, timeout=self.timeout_s, transport=self.transport
                ) as client:
                    response = await client.request(method, path, json=json, headers=self._headers())
                    response.raise_for_status()
                    return response
            except httpx.HTTPStatusError as exc:
                # Relay error bodies are useful; only fall through when another host is left
                if exc.response.status_code in (404, 405) and index < len(self.base_urls) - 1:
                    last_error = exc
                    continue
                raise ProviderError(self.name.value, _relay_error(exc.response)) from exc
            except httpx.TimeoutException as exc:
                raise ProviderError(self.name.value, "Request timed out", ProviderErrorKind.TRANSIENT) from exc
            except httpx.RequestError as exc:
                last_error = exc
                continue

        raise ProviderError(
            self.name.value,
            f"All Relay hosts failed: {last_error!r}",
            ProviderErrorKind.TRANSIENT,
        )

    def _quote_payload(self, request: QuoteRequest) -> Dict[str, Any]:
        origin = request.source_token_address
        if origin == "native" or origin.lower() == EVM_NATIVE_PLACEHOLDER.lower():
            origin = _EVM_ZERO_ADDRESS
        destination = SOL_NATIVE_ADDRESS if is_sol_token(request.destination_token_address) else request.destination_token_address
        return {
            "user": request.source_address,
            "recipient": request.solana_address,
            "originChainId": request.source_chain_id,
            "destinationChainId": RELAY_SOLANA_CHAIN_ID,
            "originCurrency": origin,
            "destinationCurrency": destination,
            "amount": request.source_amount,
            "tradeType": "EXACT_INPUT",
            "slippageTolerance": str(int(round(request.slippage * 100))),
        }

    async def quote(self, request: QuoteRequest) -> _RelayQuote:
        response = await self._request("POST", "/quote", json=self._quote_payload(request))
        try:
            return _RelayQuote.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ProviderError(self.name.value, "Unexpected Relay quote response") from exc

    async def get_quotes(self, request: QuoteRequest) -> List[Route]:
        if request.chain_kind != ChainKind.EVM:
            raise ProviderUnsupportedError(self.name.value)

        quote = await self.quote(request)
        tx_steps = [step for step in quote.steps if step.kind == "transaction"]
        if not tx_steps:
            return []

        request_id = next((s.request_id for s in tx_steps if s.request_id), None)
        fees = [
            Fee(token=fee.currency.symbol or name, amount=fee.amount)
            for name, fee in quote.fees.items()
        ]
        return [
            Route(
                provider=self.name.value,
                route_id=request_id or f"relay-{uuid4().hex[:12]}",
                steps=[
                    RouteStep(
                        chain_type=ChainKind.EVM,
                        chain_id=request.source_chain_id,
                        description=step.description or step.id,
                        provider=self.name.value,
                    )
                    for step in tx_steps
                ],
                estimated_output=TokenAmount(
                    token=quote.details.currency_out.currency.symbol or "SOL",
                    amount=quote.details.currency_out.amount,
                ),
                fees=fees,
                eta_seconds=quote.details.time_estimate,
            )
        ]

    async def get_step_tx(self, route_id: str, step_index: int, context: StepTxContext) -> TxRequest:
        # Relay quotes are short-lived; a fresh quote carries fresh calldata
        quote = await self.quote(context.quote_request())
        tx_steps = [step for step in quote.steps if step.kind == "transaction"]
        if step_index < 0 or step_index >= len(tx_steps):
            raise ProviderError(self.name.value, f"Step {step_index} not found in route")

        item = next((i for i in tx_steps[step_index].items if i.data is not None), None)
        if item is None:
            raise ProviderError(self.name.value, "Relay step has no transaction data")
        return EvmTxRequest(chain_id=item.data.chain_id, to=item.data.to, data=item.data.data, value=item.data.value)


def _relay_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return f"HTTP {response.status_code}: {body['message']}"
    return f"HTTP {response.status_code}"
