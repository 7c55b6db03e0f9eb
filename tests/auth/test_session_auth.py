"""
Tests for session challenge issuance and proof verification.
"""

import time

import jwt
import pytest
from nacl.signing import SigningKey

from tosolana.auth.models import SessionAuthProof
from tosolana.auth.session_auth import MESSAGE_TITLE, SessionAuthService, build_message
from tosolana.auth.solana_signin import base58_encode
from tosolana.config import settings
from tosolana.core.chain_types import ChainKind
from tosolana.core.session.models import ExecutionContext, Session, Step
from tosolana.errors import AuthError, InternalError

from conftest import HOST, Wallet, make_quote_request, make_route


def _session(wallet: Wallet, **overrides) -> Session:
    request = make_quote_request(wallet, **overrides)
    return Session(
        source_address=request.source_address,
        solana_address=request.solana_address,
        provider="lifi",
        route_id="route-1",
        route=make_route(),
        execution_context=ExecutionContext.from_quote_request(request),
        steps=[Step(index=0, chain_kind=ChainKind.EVM), Step(index=1, chain_kind=ChainKind.SOLANA)],
    )


def _btc_session(wallet: Wallet) -> Session:
    return _session(
        wallet,
        sourceChainId="bitcoin",
        sourceTokenAddress="BTC",
        sourceAddress="bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq",
    )


# =============================================================================
# Challenge issuance
# =============================================================================

class TestIssueChallenge:
    def test_evm_source_uses_evm_scheme(self, auth_service, wallet):
        session = _session(wallet)
        challenge = auth_service.issue_challenge(session, HOST)

        assert challenge.scheme == "evm"
        assert challenge.message.startswith(MESSAGE_TITLE)
        assert f"Session ID: {session.id}" in challenge.message
        assert f"Source Wallet (EVM): {wallet.evm_address.lower()}" in challenge.message
        assert f"Host: {HOST}" in challenge.message
        assert challenge.expires_at.endswith("Z")

    def test_non_evm_source_uses_destination_wallet(self, auth_service, wallet):
        challenge = auth_service.issue_challenge(_btc_session(wallet), HOST)

        assert challenge.scheme == "solana"
        assert "Source Wallet (BITCOIN):" in challenge.message

    def test_message_is_deterministic_for_payload(self, auth_service, wallet):
        challenge = auth_service.issue_challenge(_session(wallet), HOST)
        payload = jwt.decode(challenge.challenge, options={"verify_signature": False})
        assert build_message(payload) == challenge.message

    def test_production_requires_secret(self, monkeypatch, wallet):
        monkeypatch.setattr(settings, "environment", "production")
        monkeypatch.setattr(settings, "session_auth_secret", "")
        with pytest.raises(InternalError):
            SessionAuthService().issue_challenge(_session(wallet), HOST)


# =============================================================================
# Proof verification
# =============================================================================

class TestVerifyProof:
    def test_valid_evm_proof(self, auth_service, wallet):
        session = _session(wallet)
        proof = wallet.sign(auth_service.issue_challenge(session, HOST))
        auth_service.verify(proof, session, HOST)

    def test_valid_solana_proof_for_bitcoin_source(self, auth_service, wallet):
        session = _btc_session(wallet)
        proof = wallet.sign(auth_service.issue_challenge(session, HOST))
        auth_service.verify(proof, session, HOST)

    def test_proof_for_session_a_fails_on_session_b(self, auth_service, wallet):
        session_a = _session(wallet)
        session_b = _session(wallet)
        proof = wallet.sign(auth_service.issue_challenge(session_a, HOST))

        with pytest.raises(AuthError):
            auth_service.verify(proof, session_b, HOST)

    def test_proof_fails_on_other_host(self, auth_service, wallet):
        session = _session(wallet)
        proof = wallet.sign(auth_service.issue_challenge(session, HOST))

        with pytest.raises(AuthError):
            auth_service.verify(proof, session, "evil.example.com")

    def test_tampered_message_fails(self, auth_service, wallet):
        session = _session(wallet)
        challenge = auth_service.issue_challenge(session, HOST)
        proof = wallet.sign(challenge, message=challenge.message.replace("lifi", "relay"))

        with pytest.raises(AuthError) as exc_info:
            auth_service.verify(proof, session, HOST)
        assert exc_info.value.message == "Session authorization failed"

    def test_foreign_wallet_signature_fails_with_same_message(self, auth_service, wallet):
        session = _session(wallet)
        challenge = auth_service.issue_challenge(session, HOST)
        proof = Wallet().sign(challenge)

        with pytest.raises(AuthError) as exc_info:
            auth_service.verify(proof, session, HOST)
        assert exc_info.value.message == "Session authorization failed"

    def test_foreign_solana_key_fails(self, auth_service, wallet):
        session = _btc_session(wallet)
        challenge = auth_service.issue_challenge(session, HOST)
        other = SigningKey.generate()
        proof = SessionAuthProof(
            scheme="solana",
            challenge=challenge.challenge,
            message=challenge.message,
            signature=base58_encode(other.sign(challenge.message.encode("utf-8")).signature),
        )
        with pytest.raises(AuthError):
            auth_service.verify(proof, session, HOST)

    def test_token_from_other_secret_fails(self, wallet):
        session = _session(wallet)
        issuer = SessionAuthService(secret="one")
        proof = wallet.sign(issuer.issue_challenge(session, HOST))

        with pytest.raises(AuthError):
            SessionAuthService(secret="two").verify(proof, session, HOST)

    def test_expired_challenge_fails(self, wallet, monkeypatch):
        session = _session(wallet)
        service = SessionAuthService(secret="test-secret", ttl_seconds=60)
        real_time = time.time
        monkeypatch.setattr(time, "time", lambda: real_time() - 3600)
        proof = wallet.sign(service.issue_challenge(session, HOST))
        monkeypatch.setattr(time, "time", real_time)

        with pytest.raises(AuthError):
            service.verify(proof, session, HOST)

    def test_scheme_mismatch_fails(self, auth_service, wallet):
        session = _session(wallet)
        proof = wallet.sign(auth_service.issue_challenge(session, HOST))
        with pytest.raises(AuthError):
            auth_service.verify(proof.model_copy(update={"scheme": "solana"}), session, HOST)

    def test_missing_proof_fails(self, auth_service, wallet):
        with pytest.raises(AuthError):
            auth_service.verify(None, _session(wallet), HOST)
