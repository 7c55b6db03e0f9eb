"""Session lifecycle: models, step state machine, storage and the manager."""

from typing import TYPE_CHECKING

from .models import (
    ExecutionContext,
    InvalidTransitionError,
    Session,
    SessionStatus,
    Step,
    StepStatus,
)
from .state_machine import StepStateMachine, recompute_session_status
from .store import InMemorySessionStore, SessionStore

if TYPE_CHECKING:  # pragma: no cover
    from .manager import SessionManager, get_session_manager

__all__ = [
    "ExecutionContext",
    "InvalidTransitionError",
    "Session",
    "SessionStatus",
    "Step",
    "StepStatus",
    "StepStateMachine",
    "recompute_session_status",
    "InMemorySessionStore",
    "SessionStore",
    "SessionManager",
    "get_session_manager",
]


def __getattr__(name: str):  # pragma: no cover - simple thunk
    if name in ("SessionManager", "get_session_manager"):
        from . import manager

        return getattr(manager, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
