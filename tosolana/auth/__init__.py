from .models import SessionAuthChallenge, SessionAuthProof
from .schemes import SCHEMES, SignatureScheme, scheme_for_session
from .session_auth import (
    SessionAuthService,
    build_message,
    get_session_auth_service,
)

__all__ = [
    "SessionAuthChallenge",
    "SessionAuthProof",
    "SCHEMES",
    "SignatureScheme",
    "scheme_for_session",
    "SessionAuthService",
    "build_message",
    "get_session_auth_service",
]
