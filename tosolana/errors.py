"""
Error taxonomy for the bridge engine.

Every error carries the HTTP status it maps to so the API layer can render
it without a lookup table. Provider failures are classified by the adapter
that raised them instead of by matching on message text.
"""

from enum import Enum
from typing import Any, Dict, Iterable, Optional


class BridgeEngineError(Exception):
    """Base class for all engine errors surfaced to callers."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BridgeEngineError):
    """Malformed or out-of-range request."""

    status_code = 400
    code = "validation_error"


class ConfigurationError(BridgeEngineError):
    """Deployment is missing something the caller cannot fix (e.g. no providers)."""

    status_code = 400
    code = "configuration_error"


class ProviderErrorKind(str, Enum):
    UNSUPPORTED = "unsupported"   # Provider does not serve this chain/token
    TRANSIENT = "transient"       # Timeouts, 5xx, rate limits upstream
    UNEXPECTED = "unexpected"     # Schema mismatch, 4xx, anything else


class ProviderError(BridgeEngineError):
    """A single provider adapter call failed."""

    status_code = 502
    code = "provider_error"

    def __init__(
        self,
        provider: str,
        message: str,
        kind: ProviderErrorKind = ProviderErrorKind.UNEXPECTED,
    ):
        super().__init__(message)
        self.provider = provider
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.provider}: {self.message}"


class ProviderUnsupportedError(ProviderError):
    """Provider has nothing to offer for this request. Never shown to users."""

    def __init__(self, provider: str, message: str = "Unsupported chain"):
        super().__init__(provider, message, ProviderErrorKind.UNSUPPORTED)


class AuthError(BridgeEngineError):
    """Session proof rejected. The message never says which check failed."""

    status_code = 401
    code = "auth_error"

    def __init__(self, message: str = "Session authorization failed"):
        super().__init__(message)


class PolicyError(BridgeEngineError):
    """Execution blocked for one or more chain kinds."""

    status_code = 403
    code = "policy_error"

    def __init__(self, message: str, chain_kinds: Iterable[str] = ()):
        kinds = list(chain_kinds)
        super().__init__(message, {"blockedChainTypes": kinds} if kinds else None)
        self.chain_kinds = kinds


class NotFoundError(BridgeEngineError):
    status_code = 404
    code = "not_found"


class ConflictError(BridgeEngineError):
    """Illegal transition, hash mismatch or provider/route mismatch."""

    status_code = 409
    code = "conflict"


class RateLimitError(BridgeEngineError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int, limit: int, window_seconds: int):
        super().__init__(f"Rate limit exceeded: {limit} requests per {window_seconds}s")
        self.retry_after = retry_after
        self.limit = limit
        self.window_seconds = window_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "Rate limit exceeded", "code": self.code, "retryAfter": self.retry_after}


class FinalityPendingError(BridgeEngineError):
    """Verification was inconclusive; the caller should poll again."""

    status_code = 202
    code = "finality_pending"

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "pending": True, "reason": self.message, "code": self.code}


class FinalityTimeoutError(BridgeEngineError):
    """Bounded wait for step confirmation elapsed."""

    status_code = 504
    code = "finality_timeout"


class InternalError(BridgeEngineError):
    status_code = 500
    code = "internal_error"
