"""
Shared fixtures: fake provider adapters, a scripted finality verifier and
real wallet keys for signing session challenges.
"""

from typing import Dict, List, Optional

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.signing import SigningKey

from tosolana.auth.models import SessionAuthChallenge, SessionAuthProof
from tosolana.auth.session_auth import SessionAuthService
from tosolana.auth.solana_signin import base58_encode
from tosolana.core.bridge.models import (
    BitcoinTxRequest,
    CosmosFee,
    CosmosTxRequest,
    EvmTxRequest,
    Fee,
    QuoteRequest,
    Route,
    RouteStep,
    SolanaTxRequest,
    TokenAmount,
    TonTxRequest,
    TxRequest,
)
from tosolana.core.chain_types import ChainKind
from tosolana.core.policy.execution_policy import ExecutionPolicy
from tosolana.core.session.manager import SessionManager
from tosolana.core.session.store import InMemorySessionStore
from tosolana.errors import ProviderError
from tosolana.providers.base import BridgeProvider, ProviderName, StepTxContext
from tosolana.providers.registry import ProviderRegistry
from tosolana.services.finality import FinalityResult

BASE_CHAIN_ID = 8453
HOST = "bridge.example.com"


# =============================================================================
# Fakes
# =============================================================================

class FakeProvider(BridgeProvider):
    """Adapter returning canned routes and transactions."""

    def __init__(
        self,
        name: ProviderName = ProviderName.LIFI,
        routes: Optional[List[Route]] = None,
        error: Optional[Exception] = None,
        configured: bool = True,
        tx_request: Optional[TxRequest] = None,
    ):
        super().__init__()
        self.name = name
        self.routes = routes or []
        self.error = error
        self.configured = configured
        self.tx_request = tx_request
        self.quote_calls = 0
        self.step_tx_calls: List[StepTxContext] = []

    def is_configured(self) -> bool:
        return self.configured

    async def get_quotes(self, request: QuoteRequest) -> List[Route]:
        self.quote_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.routes)

    async def get_step_tx(self, route_id: str, step_index: int, context: StepTxContext):
        self.step_tx_calls.append(context)
        if self.error is not None:
            raise self.error
        if self.tx_request is not None:
            return self.tx_request
        kind = context.step.chain_type
        if kind == ChainKind.SOLANA:
            return SolanaTxRequest(rpc="https://rpc.example", serialized_tx_base64="AQID")
        if kind == ChainKind.BITCOIN:
            return BitcoinTxRequest(psbt_base64="cHNidP8B", to_address="bc1qvault", amount="100000")
        if kind == ChainKind.COSMOS:
            return CosmosTxRequest(chain_id="cosmoshub-4", messages=[], fee=CosmosFee(gas="200000"))
        if kind == ChainKind.TON:
            return TonTxRequest(to="EQvault", amount="1000000000")
        return EvmTxRequest(chain_id=BASE_CHAIN_ID, to="0x" + "22" * 20, data="0xdeadbeef", value="0")


class FakeVerifier:
    """Finality verifier driven by a per-hash table; unknown hashes are pending."""

    def __init__(self):
        self.final: Dict[str, FinalityResult] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []

    def confirm(self, tx: str, finality: str = "confirmed") -> None:
        self.final[tx] = FinalityResult(ok=True, finality=finality)

    def explode(self, tx: str, error: Exception) -> None:
        self.errors[tx] = error

    async def verify(self, chain_kind, tx_hash_or_sig, chain_id=None, expected_sender=None) -> FinalityResult:
        self.calls.append(tx_hash_or_sig)
        if tx_hash_or_sig in self.errors:
            raise self.errors[tx_hash_or_sig]
        return self.final.get(tx_hash_or_sig) or FinalityResult.pending("not yet")


class Wallet:
    """EVM source wallet plus Solana destination wallet, able to answer challenges."""

    def __init__(self):
        self.evm = Account.create()
        self.solana_key = SigningKey.generate()

    @property
    def evm_address(self) -> str:
        return self.evm.address

    @property
    def solana_address(self) -> str:
        return base58_encode(self.solana_key.verify_key.encode())

    def sign(self, challenge: SessionAuthChallenge, message: Optional[str] = None) -> SessionAuthProof:
        text = message if message is not None else challenge.message
        if challenge.scheme == "evm":
            signed = Account.sign_message(encode_defunct(text=text), self.evm.key)
            signature = "0x" + bytes(signed.signature).hex()
        else:
            signature = base58_encode(self.solana_key.sign(text.encode("utf-8")).signature)
        return SessionAuthProof(
            scheme=challenge.scheme,
            challenge=challenge.challenge,
            message=text,
            signature=signature,
        )


# =============================================================================
# Builders
# =============================================================================

def make_route(
    provider: str = "lifi",
    route_id: str = "route-1",
    output: str = "1000000000",
    fees: Optional[List[str]] = None,
    steps: Optional[List[RouteStep]] = None,
    **kwargs,
) -> Route:
    if steps is None:
        steps = [
            RouteStep(chain_type=ChainKind.EVM, chain_id=BASE_CHAIN_ID, description="Bridge ETH", provider=provider),
            RouteStep(chain_type=ChainKind.SOLANA, chain_id="solana", description="Claim on Solana", provider=provider),
        ]
    return Route(
        provider=provider,
        route_id=route_id,
        steps=steps,
        estimated_output=TokenAmount(token="SOL", amount=output),
        fees=[Fee(token="ETH", amount=amount) for amount in (fees or [])],
        **kwargs,
    )


def make_quote_request(wallet: "Wallet", **overrides) -> QuoteRequest:
    data = {
        "sourceChainId": BASE_CHAIN_ID,
        "sourceTokenAddress": "native",
        "sourceAmount": "10000000000000000",
        "destinationTokenAddress": "SOL",
        "sourceAddress": wallet.evm_address,
        "solanaAddress": wallet.solana_address,
    }
    data.update(overrides)
    return QuoteRequest.model_validate(data)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def wallet() -> Wallet:
    return Wallet()


@pytest.fixture
def auth_service() -> SessionAuthService:
    return SessionAuthService(secret="test-secret", ttl_seconds=3600)


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(routes=[make_route()])


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def manager(store, provider, auth_service, verifier) -> SessionManager:
    return SessionManager(
        store=store,
        registry=ProviderRegistry([provider]),
        auth=auth_service,
        verifier=verifier,
        policy=ExecutionPolicy(experimental_enabled=True),
        provider_timeout_s=5,
        auto_reconcile_kinds=["evm", "solana"],
    )


@pytest.fixture
def failing_provider() -> FakeProvider:
    return FakeProvider(name=ProviderName.RELAY, error=ProviderError("relay", "Service unavailable (HTTP 503)"))
