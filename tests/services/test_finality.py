"""
Tests for the Finality Verifier

Each chain kind's RPC/REST responses are served by httpx.MockTransport.
"""

import json

import httpx
import pytest

from tosolana.config import settings
from tosolana.core.chain_types import ChainKind
from tosolana.services.finality import FinalityVerifier

EVM_HASH = "0x" + "ab" * 32
SENDER = "0x" + "ab" * 20
SOL_SIG = "4" * 88
BTC_TXID = "f" * 64


def _verifier(handler) -> FinalityVerifier:
    return FinalityVerifier(transport=httpx.MockTransport(handler), timeout_s=1, max_retries=0)


def _rpc_handler(result):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})

    return handler, calls


# =============================================================================
# EVM
# =============================================================================

class TestEvmFinality:
    @pytest.mark.asyncio
    async def test_successful_receipt_is_confirmed(self):
        handler, calls = _rpc_handler({"status": "0x1", "from": SENDER, "blockNumber": "0x10"})
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=8453, expected_sender=SENDER.upper())

        assert result.ok
        assert result.finality == "confirmed"
        assert calls[0]["method"] == "eth_getTransactionReceipt"
        assert calls[0]["params"] == [EVM_HASH]

    @pytest.mark.asyncio
    async def test_missing_receipt_is_pending(self):
        handler, _ = _rpc_handler(None)
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1)

        assert not result.ok
        assert result.reason == "EVM transaction not yet mined"

    @pytest.mark.asyncio
    async def test_reverted_receipt_is_not_ok(self):
        handler, _ = _rpc_handler({"status": "0x0", "from": SENDER})
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1)

        assert not result.ok
        assert "reverted" in result.reason

    @pytest.mark.asyncio
    async def test_sender_mismatch_is_not_ok(self):
        handler, _ = _rpc_handler({"status": "0x1", "from": "0x" + "22" * 20})
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1, expected_sender=SENDER)

        assert not result.ok
        assert "sender" in result.reason

    @pytest.mark.asyncio
    async def test_malformed_hash_skips_rpc(self):
        handler, calls = _rpc_handler({"status": "0x1"})
        result = await _verifier(handler).verify(ChainKind.EVM, "0xabc", chain_id=1)

        assert not result.ok
        assert calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_chain_is_pending(self):
        handler, calls = _rpc_handler({"status": "0x1"})
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=999999)

        assert not result.ok
        assert calls == []

    @pytest.mark.asyncio
    async def test_rpc_error_is_inconclusive(self):
        def handler(request):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "boom"}})

        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1)
        assert not result.ok
        assert "boom" in result.reason

    @pytest.mark.asyncio
    async def test_network_failure_is_inconclusive(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1)
        assert not result.ok

    @pytest.mark.asyncio
    async def test_non_object_receipt_is_inconclusive(self):
        handler, _ = _rpc_handler("garbage")
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1)

        assert not result.ok
        assert "unexpected response" in result.reason

    @pytest.mark.asyncio
    async def test_non_object_rpc_body_is_inconclusive(self):
        handler = lambda request: httpx.Response(200, json=[{"jsonrpc": "2.0", "id": 1, "result": None}])
        result = await _verifier(handler).verify(ChainKind.EVM, EVM_HASH, chain_id=1)
        assert not result.ok


# =============================================================================
# Solana
# =============================================================================

class TestSolanaFinality:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["confirmed", "finalized"])
    async def test_confirmed_statuses(self, status):
        handler, calls = _rpc_handler({"value": [{"slot": 5, "err": None, "confirmationStatus": status}]})
        result = await _verifier(handler).verify(ChainKind.SOLANA, SOL_SIG)

        assert result.ok
        assert result.finality == status
        assert calls[0]["params"] == [[SOL_SIG], {"searchTransactionHistory": True}]

    @pytest.mark.asyncio
    async def test_confirmation_count_counts(self):
        handler, _ = _rpc_handler({"value": [{"slot": 5, "err": None, "confirmationStatus": "processed", "confirmations": 3}]})
        assert (await _verifier(handler).verify(ChainKind.SOLANA, SOL_SIG)).ok

    @pytest.mark.asyncio
    async def test_on_chain_error_is_not_ok(self):
        handler, _ = _rpc_handler({"value": [{"slot": 5, "err": {"InstructionError": [0, "Custom"]}}]})
        result = await _verifier(handler).verify(ChainKind.SOLANA, SOL_SIG)
        assert not result.ok

    @pytest.mark.asyncio
    async def test_unknown_signature_is_pending(self):
        handler, _ = _rpc_handler({"value": [None]})
        result = await _verifier(handler).verify(ChainKind.SOLANA, SOL_SIG)
        assert result.reason == "Solana signature not found"

    @pytest.mark.asyncio
    async def test_malformed_statuses_are_inconclusive(self):
        handler, _ = _rpc_handler({"value": "nope"})
        result = await _verifier(handler).verify(ChainKind.SOLANA, SOL_SIG)
        assert not result.ok


# =============================================================================
# Bitcoin
# =============================================================================

def _esplora(confirmed: bool, block_height: int, tip: int, fail_hosts=()):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host in fail_hosts:
            return httpx.Response(500)
        if request.url.path.endswith("/status"):
            return httpx.Response(200, json={"confirmed": confirmed, "block_height": block_height})
        if request.url.path.endswith("/blocks/tip/height"):
            return httpx.Response(200, text=str(tip))
        return httpx.Response(404)

    return handler


class TestBitcoinFinality:
    @pytest.mark.asyncio
    async def test_one_confirmation_is_confirmed(self):
        result = await _verifier(_esplora(True, 100, 100)).verify(ChainKind.BITCOIN, BTC_TXID)
        assert result.ok
        assert result.finality == "confirmed"
        assert result.details["confirmations"] == 1

    @pytest.mark.asyncio
    async def test_six_confirmations_is_finalized(self):
        result = await _verifier(_esplora(True, 100, 105)).verify(ChainKind.BITCOIN, BTC_TXID)
        assert result.finality == "finalized"

    @pytest.mark.asyncio
    async def test_unconfirmed_is_pending(self):
        result = await _verifier(_esplora(False, 0, 100)).verify(ChainKind.BITCOIN, BTC_TXID)
        assert not result.ok

    @pytest.mark.asyncio
    async def test_falls_back_to_next_host(self, monkeypatch):
        monkeypatch.setattr(settings, "bitcoin_api_urls", ["https://first.example/api", "https://second.example/api"])
        result = await _verifier(_esplora(True, 100, 101, fail_hosts={"first.example"})).verify(
            ChainKind.BITCOIN, BTC_TXID
        )
        assert result.ok

    @pytest.mark.asyncio
    async def test_malformed_status_body_is_inconclusive(self, monkeypatch):
        monkeypatch.setattr(settings, "bitcoin_api_urls", ["https://first.example/api"])
        handler = lambda request: httpx.Response(200, json=["confirmed"])
        result = await _verifier(handler).verify(ChainKind.BITCOIN, BTC_TXID)
        assert not result.ok

    @pytest.mark.asyncio
    async def test_all_hosts_failing_is_inconclusive(self, monkeypatch):
        monkeypatch.setattr(settings, "bitcoin_api_urls", ["https://first.example/api"])
        result = await _verifier(_esplora(True, 100, 101, fail_hosts={"first.example"})).verify(
            ChainKind.BITCOIN, BTC_TXID
        )
        assert not result.ok


# =============================================================================
# Cosmos / TON
# =============================================================================

class TestCosmosFinality:
    @pytest.mark.asyncio
    async def test_zero_code_is_confirmed(self):
        def handler(request):
            assert request.url.path.endswith("/cosmos/tx/v1beta1/txs/ABCDEF")
            return httpx.Response(200, json={"tx_response": {"code": 0, "height": "123"}})

        result = await _verifier(handler).verify(ChainKind.COSMOS, "ABCDEF", chain_id="cosmoshub-4")
        assert result.ok
        assert result.details["height"] == "123"

    @pytest.mark.asyncio
    async def test_nonzero_code_is_not_ok(self):
        handler = lambda request: httpx.Response(200, json={"tx_response": {"code": 5}})
        result = await _verifier(handler).verify(ChainKind.COSMOS, "ABCDEF", chain_id="cosmoshub-4")
        assert not result.ok

    @pytest.mark.asyncio
    async def test_not_found_is_pending(self):
        handler = lambda request: httpx.Response(404, json={"message": "tx not found"})
        result = await _verifier(handler).verify(ChainKind.COSMOS, "ABCDEF")
        assert not result.ok

    @pytest.mark.asyncio
    async def test_malformed_tx_response_is_inconclusive(self):
        handler = lambda request: httpx.Response(200, json={"tx_response": "pending"})
        result = await _verifier(handler).verify(ChainKind.COSMOS, "ABCDEF", chain_id="cosmoshub-4")
        assert not result.ok


class TestTonFinality:
    @pytest.mark.asyncio
    async def test_found_transaction_is_confirmed(self, monkeypatch):
        monkeypatch.setattr(settings, "ton_api_key", "ton-key")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "result": [{"transaction_id": {"hash": "h"}}]})

        result = await _verifier(handler).verify(ChainKind.TON, "h")
        assert result.ok
        assert seen[0].headers["X-API-Key"] == "ton-key"
        assert seen[0].url.params["hash"] == "h"

    @pytest.mark.asyncio
    async def test_empty_result_is_pending(self):
        handler = lambda request: httpx.Response(200, json={"ok": True, "result": []})
        assert not (await _verifier(handler).verify(ChainKind.TON, "h")).ok

    @pytest.mark.asyncio
    async def test_malformed_result_is_inconclusive(self):
        handler = lambda request: httpx.Response(200, json={"ok": True, "result": {"error": "bad hash"}})
        assert not (await _verifier(handler).verify(ChainKind.TON, "h")).ok
