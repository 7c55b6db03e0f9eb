"""
Tests for the step state machine and session status aggregation.
"""

import pytest

from tosolana.core.bridge.models import QuoteRequest
from tosolana.core.chain_types import ChainKind
from tosolana.core.session.models import (
    ExecutionContext,
    InvalidTransitionError,
    Session,
    SessionStatus,
    Step,
    StepStatus,
)
from tosolana.core.session.state_machine import StepStateMachine, recompute_session_status

from conftest import make_quote_request, make_route


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def session(wallet) -> Session:
    request: QuoteRequest = make_quote_request(wallet)
    return Session(
        source_address=request.source_address,
        solana_address=request.solana_address,
        provider="lifi",
        route_id="route-1",
        route=make_route(),
        execution_context=ExecutionContext.from_quote_request(request),
        steps=[Step(index=0, chain_kind=ChainKind.EVM), Step(index=1, chain_kind=ChainKind.SOLANA)],
    )


# =============================================================================
# Step transitions
# =============================================================================

class TestStepStateMachine:
    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (StepStatus.IDLE, StepStatus.SIGNING),
            (StepStatus.SIGNING, StepStatus.SIGNING),
            (StepStatus.SIGNING, StepStatus.SUBMITTED),
            (StepStatus.SUBMITTED, StepStatus.SUBMITTED),
            (StepStatus.SUBMITTED, StepStatus.CONFIRMED),
            (StepStatus.SUBMITTED, StepStatus.COMPLETED),
            (StepStatus.SUBMITTED, StepStatus.FAILED),
            (StepStatus.CONFIRMED, StepStatus.COMPLETED),
        ],
    )
    def test_valid_transitions(self, from_state, to_state):
        assert StepStateMachine.can_transition(from_state, to_state)
        StepStateMachine.validate(from_state, to_state)

    @pytest.mark.parametrize("target", list(StepStatus))
    def test_finished_states_are_monotonic(self, target):
        for source in (StepStatus.COMPLETED, StepStatus.FAILED):
            assert not StepStateMachine.can_transition(source, target)
        if target != StepStatus.COMPLETED:
            assert not StepStateMachine.can_transition(StepStatus.CONFIRMED, target)

    def test_invalid_transition_raises_with_allowed_states(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            StepStateMachine.validate(StepStatus.IDLE, StepStatus.SUBMITTED)

        assert exc_info.value.from_state == StepStatus.IDLE
        assert exc_info.value.to_state == StepStatus.SUBMITTED
        assert "failed" in exc_info.value.message
        assert exc_info.value.status_code == 409


# =============================================================================
# Session aggregation
# =============================================================================

class TestRecomputeSessionStatus:
    def test_all_idle_stays_quoted(self, session):
        assert recompute_session_status(session) == SessionStatus.QUOTED
        assert session.current_step == 0

    def test_signing_alone_stays_quoted(self, session):
        session.steps[0].status = StepStatus.SIGNING
        assert recompute_session_status(session) == SessionStatus.QUOTED

    def test_submitted_step_moves_to_bridging(self, session):
        session.steps[0].status = StepStatus.SUBMITTED
        assert recompute_session_status(session) == SessionStatus.BRIDGING

    def test_partial_confirmation_is_bridging(self, session):
        session.steps[0].status = StepStatus.CONFIRMED
        assert recompute_session_status(session) == SessionStatus.BRIDGING
        assert session.current_step == 1

    def test_all_confirmed_completes_once(self, session):
        for step in session.steps:
            step.status = StepStatus.CONFIRMED
        assert recompute_session_status(session) == SessionStatus.COMPLETED
        completed_at = session.completed_at
        assert completed_at is not None

        session.steps[1].status = StepStatus.COMPLETED
        recompute_session_status(session)
        assert session.completed_at == completed_at
        assert session.current_step == 2

    def test_failed_step_fails_session_with_message(self, session):
        session.steps[0].status = StepStatus.SUBMITTED
        session.steps[1].status = StepStatus.FAILED
        assert recompute_session_status(session) == SessionStatus.FAILED
        assert session.error_message == "Step 1 failed"

    def test_failed_is_sticky(self, session):
        session.steps[0].status = StepStatus.FAILED
        recompute_session_status(session, error_message="User rejected")
        assert session.error_message == "User rejected"

        session.steps[0].status = StepStatus.CONFIRMED
        session.steps[1].status = StepStatus.CONFIRMED
        assert recompute_session_status(session) == SessionStatus.FAILED
