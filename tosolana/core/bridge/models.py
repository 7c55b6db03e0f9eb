"""Typed models shared by the quote, composition and execution paths.

Wire names are camelCase (the public JSON API); Python attributes are
snake_case. Serialize with ``model_dump(by_alias=True, exclude_none=True)``.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..chain_types import (
    EVM_NATIVE_PLACEHOLDER,
    SOURCE_CHAIN_KINDS,
    ChainId,
    ChainKind,
    infer_chain_kind,
    is_valid_evm_address,
    is_valid_solana_address,
)

_RAW_AMOUNT_RE = re.compile(r"^\d+$")


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QuoteRequest(CamelModel):
    """Immutable quote input validated at the HTTP boundary."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source_chain_id: ChainId = Field(..., alias="sourceChainId")
    source_chain_type: Optional[ChainKind] = Field(None, alias="sourceChainType")
    source_token_address: str = Field(..., alias="sourceTokenAddress", min_length=1)
    source_amount: str = Field(..., alias="sourceAmount")
    destination_token_address: str = Field(..., alias="destinationTokenAddress", min_length=1)
    source_address: str = Field(..., alias="sourceAddress", min_length=1)
    solana_address: str = Field(..., alias="solanaAddress")
    slippage: float = Field(3.0, ge=0.1, le=50)

    @field_validator("source_chain_id")
    @classmethod
    def _check_chain_id(cls, value: ChainId) -> ChainId:
        if isinstance(value, int):
            if value <= 0:
                raise ValueError("sourceChainId must be a positive integer")
            return value
        value = value.strip()
        if not value:
            raise ValueError("sourceChainId must not be empty")
        # "8453" sent as a string is still an EVM chain
        return int(value) if value.isdigit() else value

    @field_validator("source_amount")
    @classmethod
    def _check_amount(cls, value: str) -> str:
        if not _RAW_AMOUNT_RE.match(value) or int(value) <= 0:
            raise ValueError("sourceAmount must be a positive integer string in base units")
        return value

    @field_validator("solana_address")
    @classmethod
    def _check_solana_address(cls, value: str) -> str:
        if not is_valid_solana_address(value):
            raise ValueError("Invalid Solana address")
        return value

    @model_validator(mode="after")
    def _check_source(self) -> "QuoteRequest":
        kind = self.source_chain_type or infer_chain_kind(self.source_chain_id)
        if kind is None:
            raise ValueError(f"Unknown source chain: {self.source_chain_id}")
        if kind not in SOURCE_CHAIN_KINDS:
            raise ValueError(f"Unsupported source chain type: {kind.value}")
        if kind == ChainKind.EVM:
            if not isinstance(self.source_chain_id, int):
                raise ValueError("EVM sources require a numeric sourceChainId")
            if not is_valid_evm_address(self.source_address):
                raise ValueError("Invalid EVM source address")
            token = self.source_token_address
            if token != "native" and token.lower() != EVM_NATIVE_PLACEHOLDER.lower() and not is_valid_evm_address(token):
                raise ValueError("Invalid EVM token address")
        return self

    @property
    def chain_kind(self) -> ChainKind:
        return self.source_chain_type or infer_chain_kind(self.source_chain_id) or ChainKind.EVM


class TokenAmount(CamelModel):
    token: str
    amount: str


class Fee(CamelModel):
    token: str
    amount: str


class RouteStep(CamelModel):
    chain_type: ChainKind = Field(..., alias="chainType")
    chain_id: Optional[ChainId] = Field(None, alias="chainId")
    description: str
    provider: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class RouteAction(CamelModel):
    kind: Literal["internal_nav", "external_link"]
    href: str
    label: str


class Route(CamelModel):
    provider: str
    route_id: str = Field(..., alias="routeId", min_length=1)
    steps: List[RouteStep] = Field(default_factory=list)
    estimated_output: TokenAmount = Field(..., alias="estimatedOutput")
    fees: List[Fee] = Field(default_factory=list)
    eta_seconds: Optional[int] = Field(None, alias="etaSeconds")
    warnings: Optional[List[str]] = None
    action: Optional[RouteAction] = None

    @model_validator(mode="after")
    def _steps_or_action(self) -> "Route":
        if not self.steps and self.action is None:
            raise ValueError("Route must have at least one step unless it carries an action")
        return self

    @property
    def is_executable(self) -> bool:
        return self.action is None


class QuoteResult(CamelModel):
    routes: List[Route] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


# =============================================================================
# Transaction requests (closed tagged union keyed by ``kind``)
# =============================================================================


class EvmTxRequest(CamelModel):
    kind: Literal["evm"] = "evm"
    chain_id: int = Field(..., alias="chainId")
    to: str
    data: Optional[str] = None
    value: Optional[str] = None


class SolanaTxRequest(CamelModel):
    kind: Literal["solana"] = "solana"
    rpc: str
    serialized_tx_base64: str = Field(..., alias="serializedTxBase64")


class BitcoinInputToSign(CamelModel):
    index: int
    address: str


class BitcoinTxRequest(CamelModel):
    kind: Literal["bitcoin"] = "bitcoin"
    psbt_base64: str = Field(..., alias="psbtBase64")
    inputs_to_sign: List[BitcoinInputToSign] = Field(default_factory=list, alias="inputsToSign")
    to_address: Optional[str] = Field(None, alias="toAddress")
    amount: Optional[str] = None
    memo: Optional[str] = None


class CosmosCoin(CamelModel):
    denom: str
    amount: str


class CosmosFee(CamelModel):
    amount: List[CosmosCoin] = Field(default_factory=list)
    gas: str


class CosmosTxRequest(CamelModel):
    kind: Literal["cosmos"] = "cosmos"
    chain_id: str = Field(..., alias="chainId")
    messages: List[Dict[str, Any]]
    fee: CosmosFee
    memo: Optional[str] = None


class TonTxRequest(CamelModel):
    kind: Literal["ton"] = "ton"
    to: str
    amount: str
    payload: Optional[str] = None
    state_init: Optional[str] = Field(None, alias="stateInit")


TxRequest = Annotated[
    Union[EvmTxRequest, SolanaTxRequest, BitcoinTxRequest, CosmosTxRequest, TonTxRequest],
    Field(discriminator="kind"),
]
