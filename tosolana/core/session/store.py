"""
Session Store

The store is the only shared mutable resource. ``update_step`` is a
compare-and-set on (status, hash) so that first-hash-wins holds even if two
writers race past the manager's in-process lock (e.g. multiple workers
against one database).
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ...errors import ConflictError, NotFoundError
from .models import Session, Step, StepStatus, utc_now

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """CRUD collaborator for sessions and their steps."""

    @abstractmethod
    async def create(self, session: Session) -> Session:
        """Persist a session together with all of its steps."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        """Return a detached copy, steps ordered by index."""

    @abstractmethod
    async def update_step(
        self,
        session_id: str,
        step_index: int,
        *,
        expected_status: StepStatus,
        expected_hash: Optional[str],
        status: StepStatus,
        tx_hash_or_sig: Optional[str],
    ) -> Step:
        """Set status and hash together, only if the step still matches the expectation."""

    @abstractmethod
    async def save_aggregate(self, session: Session) -> None:
        """Write the session-level fields (status, current step, error, timestamps)."""

    @abstractmethod
    async def list_reconcilable(self) -> List[str]:
        """Ids of non-terminal sessions with at least one submitted step."""


class InMemorySessionStore(SessionStore):
    """Process-local store; copies on the way in and out so callers never share state."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def create(self, session: Session) -> Session:
        async with self._lock:
            if session.id in self._sessions:
                raise ConflictError(f"Session {session.id} already exists")
            self._sessions[session.id] = copy.deepcopy(session)
            return copy.deepcopy(session)

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                return None
            result = copy.deepcopy(stored)
        result.steps.sort(key=lambda s: s.index)
        return result

    async def update_step(
        self,
        session_id: str,
        step_index: int,
        *,
        expected_status: StepStatus,
        expected_hash: Optional[str],
        status: StepStatus,
        tx_hash_or_sig: Optional[str],
    ) -> Step:
        async with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                raise NotFoundError("Session not found")
            step = stored.get_step(step_index)
            if step is None:
                raise NotFoundError(f"Step {step_index} not found")
            if step.status != expected_status or step.tx_hash_or_sig != expected_hash:
                raise ConflictError(f"Step {step_index} was modified concurrently")

            step.status = status
            step.tx_hash_or_sig = tx_hash_or_sig
            step.updated_at = utc_now()
            stored.updated_at = step.updated_at
            return copy.deepcopy(step)

    async def save_aggregate(self, session: Session) -> None:
        async with self._lock:
            stored = self._sessions.get(session.id)
            if stored is None:
                raise NotFoundError("Session not found")
            stored.status = session.status
            stored.current_step = session.current_step
            stored.error_message = session.error_message
            stored.updated_at = session.updated_at
            if stored.completed_at is None:
                stored.completed_at = session.completed_at

    async def list_reconcilable(self) -> List[str]:
        async with self._lock:
            return [
                session.id
                for session in self._sessions.values()
                if not session.is_terminal
                and any(step.status == StepStatus.SUBMITTED for step in session.steps)
            ]

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)
