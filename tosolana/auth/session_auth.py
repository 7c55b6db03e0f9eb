"""
Session authorization (challenge / proof).

On session creation the server issues a challenge: an HS256 token carrying
every field the session is bound to, plus the human-readable message the
wallet signs. Mutating calls return the challenge, the message and the
signature. Verification rebuilds the message from the *stored* session and
checks the signature against the session wallet, so a proof for one session
(or one host) is useless against another.

Flow:
1. POST /execute/step (create) -> sessionAuthChallenge
2. Wallet signs challenge.message
3. Client sends {scheme, challenge, message, signature} as sessionAuth
"""

import hashlib
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt

from ..config import settings
from ..core.session.models import Session
from ..errors import AuthError, InternalError
from .models import SessionAuthChallenge, SessionAuthProof
from .schemes import SCHEMES, SignatureScheme, scheme_for_session

logger = logging.getLogger(__name__)

SESSION_AUTH_VERSION = 1
JWT_ALGORITHM = "HS256"
MESSAGE_TITLE = "ToSolana Session Authorization"
MESSAGE_FOOTER = "Authorize bridge execution and step status updates for this session only."


def normalize_host(host: Optional[str]) -> Optional[str]:
    if not host:
        return None
    return host.strip().lower() or None


def _iso_ms(epoch_seconds: int) -> str:
    stamp = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_message(payload: Dict[str, Any]) -> str:
    """Deterministic text for a challenge payload."""
    kind = str(payload.get("sourceChainType", "evm")).upper()
    lines = [
        MESSAGE_TITLE,
        "",
        f"Session ID: {payload['sessionId']}",
        f"Source Wallet ({kind}): {payload['sourceAddress']}",
        f"Destination Wallet (Solana): {payload['solanaAddress']}",
        f"Provider: {payload['provider']}",
        f"Route ID: {payload['routeId']}",
        f"Nonce: {payload['nonce']}",
        f"Issued At: {_iso_ms(payload['iat'])}",
        f"Expires At: {_iso_ms(payload['exp'])}",
    ]
    if payload.get("host"):
        lines.append(f"Host: {payload['host']}")
    lines.extend(["", MESSAGE_FOOTER])
    return "\n".join(lines)


def _source_address(session: Session, scheme: SignatureScheme) -> str:
    address = session.source_address.strip()
    return address.lower() if scheme.name == "evm" else address


class SessionAuthService:
    """Issues and verifies session challenges."""

    def __init__(self, secret: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self._configured_secret = secret
        self._secret: Optional[bytes] = None
        self.ttl_seconds = ttl_seconds or settings.session_auth_ttl_seconds
        self.max_clock_skew = settings.session_auth_max_clock_skew_seconds

    def _get_secret(self) -> bytes:
        if self._secret is not None:
            return self._secret

        configured = self._configured_secret or settings.session_auth_secret
        if configured and configured.strip():
            self._secret = hashlib.sha256(configured.encode("utf-8")).digest()
            return self._secret

        if settings.is_production:
            raise InternalError("SESSION_AUTH_SECRET is required in production")

        logger.warning("SESSION_AUTH_SECRET not set; using an ephemeral in-memory secret for development")
        self._secret = secrets.token_bytes(32)
        return self._secret

    def _make_payload(self, session: Session, scheme: SignatureScheme, audience: Optional[str]) -> Dict[str, Any]:
        now = int(time.time())
        payload: Dict[str, Any] = {
            "v": SESSION_AUTH_VERSION,
            "scheme": scheme.name,
            "sessionId": session.id,
            "sourceAddress": _source_address(session, scheme),
            "sourceChainType": session.execution_context.source_chain_kind.value,
            "solanaAddress": session.solana_address.strip(),
            "provider": session.provider,
            "routeId": session.route_id,
            "nonce": secrets.token_hex(16),
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        host = normalize_host(audience)
        if host:
            payload["host"] = host
        return payload

    def issue_challenge(self, session: Session, audience: Optional[str] = None) -> SessionAuthChallenge:
        """
        Raises:
            AuthError: the session wallet cannot sign with any registered scheme
        """
        scheme = scheme_for_session(session)
        try:
            scheme.signer_address(session)
        except ValueError as exc:
            logger.info(f"Cannot issue session challenge for {session.id}: {exc}")
            raise AuthError("Session wallet cannot be used for session authorization") from exc

        payload = self._make_payload(session, scheme, audience)
        token = jwt.encode(payload, self._get_secret(), algorithm=JWT_ALGORITHM)
        return SessionAuthChallenge(
            scheme=scheme.name,
            challenge=token,
            message=build_message(payload),
            expires_at=_iso_ms(payload["exp"]),
        )

    def verify(self, proof: Optional[SessionAuthProof], session: Session, audience: Optional[str] = None) -> None:
        """
        Raises:
            AuthError: for every failure, with the same generic message
        """
        try:
            self._verify(proof, session, audience)
        except ValueError as exc:
            logger.debug(f"Session auth rejected for {session.id}: {exc}")
            raise AuthError() from None

    def _verify(self, proof: Optional[SessionAuthProof], session: Session, audience: Optional[str]) -> None:
        if proof is None:
            raise ValueError("missing proof")

        scheme = SCHEMES.get(proof.scheme)
        if scheme is None:
            raise ValueError(f"unsupported scheme {proof.scheme!r}")
        if scheme is not scheme_for_session(session):
            raise ValueError("scheme does not match the session wallet")

        try:
            payload = jwt.decode(
                proof.challenge,
                self._get_secret(),
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "iat"], "verify_iat": False},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ValueError("challenge expired") from exc
        except jwt.InvalidTokenError as exc:
            raise ValueError(f"invalid challenge token: {exc}") from exc

        if payload.get("v") != SESSION_AUTH_VERSION or payload.get("scheme") != scheme.name:
            raise ValueError("challenge version or scheme mismatch")

        iat = payload.get("iat")
        if not isinstance(iat, int) or iat > time.time() + self.max_clock_skew:
            raise ValueError("challenge issued in the future")

        expected = {
            "sessionId": session.id,
            "provider": session.provider,
            "routeId": session.route_id,
            "sourceAddress": _source_address(session, scheme),
            "sourceChainType": session.execution_context.source_chain_kind.value,
            "solanaAddress": session.solana_address.strip(),
        }
        for key, value in expected.items():
            if payload.get(key) != value:
                raise ValueError(f"{key} mismatch")

        token_host = normalize_host(payload.get("host"))
        request_host = normalize_host(audience)
        if token_host and request_host and token_host != request_host:
            raise ValueError("host mismatch")

        if proof.message != build_message(payload):
            raise ValueError("message mismatch")

        scheme.verify(proof.message, proof.signature, scheme.signer_address(session))


# Singleton instance
_session_auth_service: Optional[SessionAuthService] = None


def get_session_auth_service() -> SessionAuthService:
    """Get the singleton session auth service instance."""
    global _session_auth_service
    if _session_auth_service is None:
        _session_auth_service = SessionAuthService()
    return _session_auth_service
