"""
Tests for the Finality Reconciler Worker

Runs bounded reconcile loops against a session manager wired to fakes.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tosolana.core.session.models import SessionStatus, StepStatus
from tosolana.workers.finality_reconciler import FinalityReconciler, ReconcileResult

from conftest import HOST, make_quote_request, make_route

HASH_A = "0x" + "ab" * 32


async def _submitted_session(manager, wallet):
    route = make_route()
    session, challenge = await manager.create_session(
        make_quote_request(wallet), route, provider="lifi", route_id="route-1", audience=HOST
    )
    proof = wallet.sign(challenge)
    await manager.request_step_transaction(session.id, 0, "lifi", "route-1", proof, audience=HOST)
    await manager.report_step_status(session.id, 0, StepStatus.SUBMITTED, HASH_A, proof, audience=HOST)
    return session


# =============================================================================
# run_once / run_loop
# =============================================================================

class TestFinalityReconciler:
    @pytest.mark.asyncio
    async def test_run_once_confirms_verified_steps(self, manager, verifier, wallet):
        session = await _submitted_session(manager, wallet)
        verifier.confirm(HASH_A)

        result = await FinalityReconciler(manager=manager).run_once()

        assert isinstance(result, ReconcileResult)
        assert result.sessions_checked == 1
        assert result.to_dict()["sessionsChecked"] == 1
        stored = await manager.get_session(session.id)
        assert stored.steps[0].status == StepStatus.CONFIRMED
        assert stored.status == SessionStatus.BRIDGING

    @pytest.mark.asyncio
    async def test_pending_steps_stay_submitted(self, manager, wallet):
        session = await _submitted_session(manager, wallet)

        await FinalityReconciler(manager=manager, interval_seconds=0).run_loop(max_iterations=2)

        stored = await manager.get_session(session.id)
        assert stored.steps[0].status == StepStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_loop_survives_failing_iteration(self):
        manager = AsyncMock()
        manager.reconcile_all.side_effect = [RuntimeError("store down"), 3]

        reconciler = FinalityReconciler(manager=manager, interval_seconds=0)
        await reconciler.run_loop(max_iterations=2)

        assert manager.reconcile_all.await_count == 2

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        manager = AsyncMock()
        manager.reconcile_all.return_value = 0

        reconciler = FinalityReconciler(manager=manager, interval_seconds=0.01)
        reconciler.start()
        assert reconciler.running
        await asyncio.sleep(0.05)
        await reconciler.stop()

        assert not reconciler.running
        assert manager.reconcile_all.await_count >= 1
