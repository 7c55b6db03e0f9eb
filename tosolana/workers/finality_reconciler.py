"""
Finality Reconciler Worker

Background loop that confirms submitted steps on chains the server can
verify itself, so sessions advance even when no client is polling status.
Started from the app lifespan when the reconcile interval is positive.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..core.session.manager import SessionManager, get_session_manager

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result from one reconcile pass."""
    started_at: datetime
    ended_at: datetime
    sessions_checked: int
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "endedAt": self.ended_at.isoformat(),
            "durationSeconds": self.duration_seconds,
            "sessionsChecked": self.sessions_checked,
            "error": self.error,
        }


class FinalityReconciler:
    def __init__(self, manager: Optional[SessionManager] = None, interval_seconds: float = 5.0):
        self._manager = manager
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def manager(self) -> SessionManager:
        return self._manager or get_session_manager()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> ReconcileResult:
        started_at = datetime.now(timezone.utc)
        checked = await self.manager.reconcile_all()
        if checked:
            logger.debug(f"Reconciled {checked} sessions")
        return ReconcileResult(
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            sessions_checked=checked,
        )

    async def run_loop(self, max_iterations: Optional[int] = None) -> None:
        """
        Reconcile repeatedly until cancelled.

        Args:
            max_iterations: Max iterations (None for infinite)
        """
        iterations = 0
        while max_iterations is None or iterations < max_iterations:
            try:
                await self.run_once()
            except Exception as e:
                # Keep the loop alive; the next pass retries every session
                logger.error(f"Finality reconcile iteration {iterations + 1} failed: {e}")

            iterations += 1

            if max_iterations is None or iterations < max_iterations:
                await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Starting finality reconciler (every {self.interval_seconds}s)")
        self._task = asyncio.create_task(self.run_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Finality reconciler stopped")
