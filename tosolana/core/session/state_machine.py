"""
Step / Session State Machine

Step transitions are validated against a fixed table. Session status is
never set directly; it is recomputed from the steps after every mutation.
"""

import logging
from typing import Dict, Optional, Set

from .models import (
    FINISHED_STEP_STATES,
    InvalidTransitionError,
    Session,
    SessionStatus,
    StepStatus,
    utc_now,
)

logger = logging.getLogger(__name__)


class StepStateMachine:
    """Transition rules for a single step."""

    TRANSITIONS: Dict[StepStatus, Set[StepStatus]] = {
        StepStatus.IDLE: {
            StepStatus.SIGNING,
            StepStatus.FAILED,
        },
        StepStatus.SIGNING: {
            StepStatus.SIGNING,     # Client asked for the tx again
            StepStatus.SUBMITTED,
            StepStatus.FAILED,
        },
        StepStatus.SUBMITTED: {
            StepStatus.SUBMITTED,   # Idempotent re-report
            StepStatus.CONFIRMED,
            StepStatus.COMPLETED,
            StepStatus.FAILED,
        },
        StepStatus.CONFIRMED: {
            StepStatus.COMPLETED,
        },
        StepStatus.COMPLETED: set(),
        StepStatus.FAILED: set(),
    }

    @classmethod
    def can_transition(cls, from_state: StepStatus, to_state: StepStatus) -> bool:
        return to_state in cls.TRANSITIONS.get(from_state, set())

    @classmethod
    def validate(cls, from_state: StepStatus, to_state: StepStatus) -> None:
        """
        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not cls.can_transition(from_state, to_state):
            allowed = sorted(s.value for s in cls.TRANSITIONS.get(from_state, set()))
            raise InvalidTransitionError(
                from_state=from_state,
                to_state=to_state,
                message=f"Invalid step transition from {from_state.value} to {to_state.value}. "
                        f"Allowed: {allowed}",
            )


def first_unfinished_index(session: Session) -> int:
    for step in sorted(session.steps, key=lambda s: s.index):
        if not step.is_finished:
            return step.index
    return len(session.steps)


def recompute_session_status(session: Session, error_message: Optional[str] = None) -> SessionStatus:
    """
    Derive the aggregate session status from its steps and apply it.

    Terminal states are sticky. ``completed_at`` is set the first time the
    session completes and never rewritten.
    """
    previous = session.status
    session.current_step = first_unfinished_index(session)

    if previous in (SessionStatus.FAILED, SessionStatus.COMPLETED):
        return previous

    statuses = [step.status for step in session.steps]
    if any(status == StepStatus.FAILED for status in statuses):
        new_status = SessionStatus.FAILED
        failed_index = next(s.index for s in session.steps if s.status == StepStatus.FAILED)
        session.error_message = error_message or session.error_message or f"Step {failed_index} failed"
    elif session.steps and all(step.is_finished for step in session.steps):
        new_status = SessionStatus.COMPLETED
    elif any(status in (StepStatus.SUBMITTED, *FINISHED_STEP_STATES) for status in statuses):
        new_status = SessionStatus.BRIDGING
    else:
        new_status = previous

    if new_status != previous:
        now = utc_now()
        session.status = new_status
        session.updated_at = now
        if new_status == SessionStatus.COMPLETED and session.completed_at is None:
            session.completed_at = now
        logger.info(f"Session {session.id}: {previous.value} -> {new_status.value}")

    return session.status
