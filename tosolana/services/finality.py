"""
Transaction finality verification per chain kind.

``verify`` never raises for network or RPC problems: an inconclusive check
is reported as ``ok=False`` with a reason so callers can simply poll again.
RPC and REST bodies are validated against the small models below before
any field is read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import settings
from ..core.chain_types import ChainId, ChainKind, is_valid_evm_tx_hash
from ..providers.http import send_with_retry

logger = logging.getLogger(__name__)

BITCOIN_FINALIZED_CONFIRMATIONS = 6


class FinalityRpcError(Exception):
    """RPC endpoint returned an error or an unusable response."""


@dataclass
class FinalityResult:
    ok: bool
    finality: Optional[str] = None    # "confirmed" | "finalized"
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def pending(cls, reason: str, details: Optional[Dict[str, Any]] = None) -> "FinalityResult":
        return cls(ok=False, reason=reason, details=details)


# =============================================================================
# Response schemas
# =============================================================================

class _JsonRpcResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    result: Any = None
    error: Any = None


class _EvmReceipt(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: Optional[str] = None
    sender: Optional[str] = Field(None, alias="from")
    block_number: Optional[str] = Field(None, alias="blockNumber")


class _SolanaSignatureStatus(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    slot: Optional[int] = None
    err: Any = None
    confirmation_status: Optional[str] = Field(None, alias="confirmationStatus")
    confirmations: Optional[int] = None


class _SolanaSignatureStatuses(BaseModel):
    model_config = ConfigDict(extra="allow")

    value: List[Optional[_SolanaSignatureStatus]] = Field(default_factory=list)


class _EsploraTxStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    confirmed: bool = False
    block_height: Optional[int] = None


class _CosmosTxResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: int = 0
    height: Optional[Union[int, str]] = None


class _CosmosTxLookup(BaseModel):
    model_config = ConfigDict(extra="allow")

    tx_response: Optional[_CosmosTxResponse] = None


class _TonTransactions(BaseModel):
    model_config = ConfigDict(extra="allow")

    result: List[Dict[str, Any]] = Field(default_factory=list)


class FinalityVerifier:
    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_s: Optional[float] = None,
        max_retries: int = 2,
    ):
        self.transport = transport
        self.timeout_s = timeout_s or settings.finality_timeout_seconds
        self.max_retries = max_retries

    async def verify(
        self,
        chain_kind: ChainKind,
        tx_hash_or_sig: str,
        chain_id: Optional[ChainId] = None,
        expected_sender: Optional[str] = None,
    ) -> FinalityResult:
        tx = (tx_hash_or_sig or "").strip()
        kind = ChainKind(chain_kind)
        try:
            if kind == ChainKind.EVM:
                return await self.verify_evm(tx, chain_id, expected_sender)
            if kind == ChainKind.SOLANA:
                return await self.verify_solana(tx)
            if kind == ChainKind.BITCOIN:
                return await self.verify_bitcoin(tx)
            if kind == ChainKind.COSMOS:
                return await self.verify_cosmos(tx, chain_id)
            if kind == ChainKind.TON:
                return await self.verify_ton(tx)
        except ValidationError as exc:
            logger.info(f"{kind.value} finality lookup for {tx} returned an unexpected body: {exc}")
            return FinalityResult.pending(
                f"{kind.value} transaction lookup returned an unexpected response ({exc.error_count()} errors)"
            )
        except (httpx.HTTPError, FinalityRpcError, ValueError) as exc:
            logger.info(f"{kind.value} finality lookup for {tx} failed: {exc}")
            return FinalityResult.pending(f"{kind.value} transaction lookup failed: {exc}")
        return FinalityResult.pending("Unsupported chain type")

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await send_with_retry(
            "GET",
            url,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            transport=self.transport,
            **kwargs,
        )

    async def _rpc_call(self, rpc_url: str, method: str, params: List[Any]) -> Any:
        """JSON-RPC 2.0 call returning ``result``."""
        response = await send_with_retry(
            "POST",
            rpc_url,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            transport=self.transport,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        data = _JsonRpcResponse.model_validate(response.json())
        if data.error:
            error = data.error
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise FinalityRpcError(f"RPC error: {message}")
        return data.result

    # =========================================================================
    # EVM
    # =========================================================================

    async def verify_evm(
        self,
        tx_hash: str,
        chain_id: Optional[ChainId],
        expected_sender: Optional[str] = None,
    ) -> FinalityResult:
        if not is_valid_evm_tx_hash(tx_hash):
            return FinalityResult.pending("Invalid EVM transaction hash format")

        numeric_chain_id: Optional[int] = None
        if isinstance(chain_id, int) and not isinstance(chain_id, bool):
            numeric_chain_id = chain_id
        elif isinstance(chain_id, str) and chain_id.isdigit():
            numeric_chain_id = int(chain_id)
        if not numeric_chain_id or numeric_chain_id <= 0:
            return FinalityResult.pending("Missing or invalid EVM chainId for confirmation")

        rpc_url = settings.evm_rpc_urls.get(numeric_chain_id)
        if not rpc_url:
            return FinalityResult.pending(f"No RPC configured for EVM chain {numeric_chain_id}")

        raw = await self._rpc_call(rpc_url, "eth_getTransactionReceipt", [tx_hash])
        if raw is None:
            return FinalityResult.pending("EVM transaction not yet mined")
        receipt = _EvmReceipt.model_validate(raw)

        if receipt.status != "0x1":
            return FinalityResult.pending("EVM transaction reverted", {"status": receipt.status})

        sender = (receipt.sender or "").lower()
        if expected_sender and sender != expected_sender.strip().lower():
            return FinalityResult.pending("EVM transaction sender mismatch")

        return FinalityResult(
            ok=True,
            finality="confirmed",
            details={"blockNumber": receipt.block_number},
        )

    # =========================================================================
    # Solana
    # =========================================================================

    async def verify_solana(self, signature: str) -> FinalityResult:
        if len(signature) < 32:
            return FinalityResult.pending("Invalid Solana transaction signature format")

        result = await self._rpc_call(
            settings.solana_rpc_url,
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = _SolanaSignatureStatuses.model_validate(result or {}).value
        status = statuses[0] if statuses else None
        if status is None:
            return FinalityResult.pending("Solana signature not found")
        if status.err:
            return FinalityResult.pending(f"Solana transaction failed: {status.err}")

        if status.confirmation_status in ("confirmed", "finalized"):
            return FinalityResult(ok=True, finality=status.confirmation_status, details={"slot": status.slot})

        if status.confirmations is not None and status.confirmations >= 1:
            return FinalityResult(ok=True, finality="confirmed", details={"slot": status.slot})

        return FinalityResult.pending("Solana transaction is not yet confirmed")

    # =========================================================================
    # Bitcoin (Esplora REST, hosts tried in order)
    # =========================================================================

    async def verify_bitcoin(self, txid: str) -> FinalityResult:
        if len(txid) != 64:
            return FinalityResult.pending("Invalid Bitcoin transaction ID format")

        last_error: Optional[Exception] = None
        for base_url in settings.bitcoin_api_urls:
            base_url = base_url.rstrip("/")
            try:
                return await self._bitcoin_status(base_url, txid)
            except (httpx.HTTPError, FinalityRpcError, ValueError) as exc:
                logger.debug(f"Bitcoin API {base_url} failed: {exc}")
                last_error = exc
                continue

        raise FinalityRpcError(f"All Bitcoin APIs failed: {last_error}")

    async def _bitcoin_status(self, base_url: str, txid: str) -> FinalityResult:
        response = await self._get(f"{base_url}/tx/{txid}/status")
        if response.status_code == 404:
            return FinalityResult.pending("Bitcoin transaction not found")
        response.raise_for_status()
        status = _EsploraTxStatus.model_validate(response.json())

        if not status.confirmed:
            return FinalityResult.pending("Bitcoin transaction not yet confirmed")

        block_height = status.block_height
        tip_response = await self._get(f"{base_url}/blocks/tip/height")
        tip_response.raise_for_status()
        tip_height = int(tip_response.text.strip())

        confirmations = tip_height - int(block_height) + 1 if block_height is not None else 1
        if confirmations < 1:
            return FinalityResult.pending("Bitcoin transaction not yet confirmed")

        finality = "finalized" if confirmations >= BITCOIN_FINALIZED_CONFIRMATIONS else "confirmed"
        return FinalityResult(
            ok=True,
            finality=finality,
            details={"confirmations": confirmations, "blockHeight": block_height},
        )

    # =========================================================================
    # Cosmos (LCD REST)
    # =========================================================================

    async def verify_cosmos(self, tx_hash: str, chain_id: Optional[ChainId] = None) -> FinalityResult:
        if not tx_hash:
            return FinalityResult.pending("Invalid Cosmos transaction hash")

        cosmos_chain = chain_id if isinstance(chain_id, str) and chain_id else settings.default_cosmos_chain_id
        endpoint = settings.cosmos_rest_endpoints.get(cosmos_chain)
        if not endpoint:
            return FinalityResult.pending(f"No REST endpoint configured for Cosmos chain {cosmos_chain}")

        response = await self._get(f"{endpoint.rstrip('/')}/cosmos/tx/v1beta1/txs/{tx_hash}")
        if response.status_code in (400, 404):
            return FinalityResult.pending("Cosmos transaction not yet confirmed")
        response.raise_for_status()

        tx_response = _CosmosTxLookup.model_validate(response.json()).tx_response
        if tx_response is None or not tx_response.model_fields_set:
            return FinalityResult.pending("Cosmos transaction not yet confirmed")
        if tx_response.code != 0:
            return FinalityResult.pending(f"Cosmos transaction failed with code {tx_response.code}")

        return FinalityResult(
            ok=True,
            finality="confirmed",
            details={"height": tx_response.height, "chainId": cosmos_chain},
        )

    # =========================================================================
    # TON (toncenter)
    # =========================================================================

    async def verify_ton(self, tx_hash: str) -> FinalityResult:
        if not tx_hash:
            return FinalityResult.pending("Invalid TON transaction hash")

        headers = {"X-API-Key": settings.ton_api_key} if settings.ton_api_key else {}
        response = await self._get(
            f"{settings.ton_api_url.rstrip('/')}/getTransactions",
            params={"hash": tx_hash, "limit": 1},
            headers=headers,
        )
        if response.status_code == 404:
            return FinalityResult.pending("TON transaction not yet confirmed")
        response.raise_for_status()

        if _TonTransactions.model_validate(response.json()).result:
            return FinalityResult(ok=True, finality="confirmed")
        return FinalityResult.pending("TON transaction not yet confirmed")


_finality_verifier: Optional[FinalityVerifier] = None


def get_finality_verifier() -> FinalityVerifier:
    global _finality_verifier
    if _finality_verifier is None:
        _finality_verifier = FinalityVerifier()
    return _finality_verifier
