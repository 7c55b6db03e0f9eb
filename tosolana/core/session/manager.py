"""
Session Manager

The only component that mutates Session/Step state. Every
read-validate-write sequence for a session runs under that session's
asyncio.Lock, and the store's compare-and-set on (status, hash) backs it up.
Provider and RPC calls happen outside the lock.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Iterable, Optional, Tuple

from ...config import settings
from ...errors import (
    ConflictError,
    FinalityPendingError,
    FinalityTimeoutError,
    NotFoundError,
    ProviderError,
    ProviderErrorKind,
    ValidationError,
)
from ..bridge.models import QuoteRequest, Route, TxRequest
from ..chain_types import ChainKind
from ..policy.execution_policy import ExecutionPolicy
from .models import ExecutionContext, Session, SessionStatus, Step, StepStatus
from .state_machine import StepStateMachine, recompute_session_status
from .store import SessionStore

if TYPE_CHECKING:
    from ...auth.models import SessionAuthChallenge, SessionAuthProof
    from ...auth.session_auth import SessionAuthService
    from ...providers.base import BridgeProvider
    from ...providers.registry import ProviderRegistry
    from ...services.finality import FinalityVerifier

logger = logging.getLogger(__name__)

NOT_EXECUTABLE_MESSAGE = "Route is not executable via this endpoint"

# Statuses a client may report; idle/signing are driven by the server
REPORTABLE_STATUSES = frozenset(
    {StepStatus.SUBMITTED, StepStatus.CONFIRMED, StepStatus.COMPLETED, StepStatus.FAILED}
)


class SessionManager:
    def __init__(
        self,
        store: SessionStore,
        registry: "ProviderRegistry",
        auth: "SessionAuthService",
        verifier: "FinalityVerifier",
        policy: Optional[ExecutionPolicy] = None,
        provider_timeout_s: Optional[float] = None,
        auto_reconcile_kinds: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.registry = registry
        self.auth = auth
        self.verifier = verifier
        self.policy = policy or ExecutionPolicy()
        self.provider_timeout_s = provider_timeout_s or settings.provider_timeout_seconds
        kinds = auto_reconcile_kinds if auto_reconcile_kinds is not None else settings.auto_reconcile_chain_kinds
        self.auto_reconcile_kinds = frozenset(ChainKind(kind) for kind in kinds)
        # Entries live only while some coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # =========================================================================
    # Creation / lookup
    # =========================================================================

    async def create_session(
        self,
        request: QuoteRequest,
        route: Route,
        provider: str,
        route_id: str,
        audience: Optional[str] = None,
    ) -> Tuple[Session, "SessionAuthChallenge"]:
        """
        Create a session and its steps, and issue the session challenge.

        Raises:
            ConflictError: action route, or route does not match provider/routeId
            PolicyError: a step's chain kind is disabled (nothing is persisted)
            ValidationError: unknown provider
            AuthError: the source wallet cannot sign a challenge
        """
        if not route.is_executable:
            raise ConflictError(NOT_EXECUTABLE_MESSAGE)
        if route.provider != provider or route.route_id != route_id:
            raise ConflictError("Route does not match the selected provider and routeId")
        self.registry.get(provider)

        self.policy.ensure_route_allowed(route.steps)

        session = Session(
            source_address=request.source_address.strip(),
            solana_address=request.solana_address.strip(),
            provider=provider,
            route_id=route_id,
            route=route,
            execution_context=ExecutionContext.from_quote_request(request),
            steps=[
                Step(index=index, chain_kind=ChainKind(step.chain_type), chain_id=step.chain_id)
                for index, step in enumerate(route.steps)
            ],
        )
        challenge = self.auth.issue_challenge(session, audience)
        stored = await self.store.create(session)

        logger.info(
            f"Session {stored.id} created: provider={provider} route={route_id} steps={len(stored.steps)}"
        )
        return stored, challenge

    async def get_session(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def issue_challenge(self, session_id: str, audience: Optional[str] = None) -> "SessionAuthChallenge":
        """Fresh challenge for a live session (e.g. after the first one expired)."""
        session = await self.get_session(session_id)
        self._ensure_active(session)
        return self.auth.issue_challenge(session, audience)

    @staticmethod
    def _ensure_active(session: Session) -> None:
        if session.is_terminal:
            raise ConflictError(f"Session is already {session.status.value}")

    @staticmethod
    def _require_step(session: Session, step_index: int) -> Step:
        step = session.get_step(step_index)
        if step is None:
            raise NotFoundError(f"Step {step_index} not found")
        return step

    def _adapter_for_step(self, session: Session, step_index: int) -> "BridgeProvider":
        # Composed steps (e.g. the appended Jupiter swap) carry their own provider tag
        tag = session.route.steps[step_index].provider
        if tag and tag != session.provider and self.registry.find(tag) is not None:
            return self.registry.get(tag)
        return self.registry.get(session.provider)

    # =========================================================================
    # Step transaction
    # =========================================================================

    async def request_step_transaction(
        self,
        session_id: str,
        step_index: int,
        provider: str,
        route_id: str,
        proof: Optional["SessionAuthProof"],
        audience: Optional[str] = None,
    ) -> TxRequest:
        """
        Build the unsigned transaction for one step and move it to ``signing``.

        Provider inputs come from the stored execution context only. The
        returned transaction must be for the chain kind recorded on the step;
        otherwise the step stays untouched.
        """
        from ...providers.base import StepTxContext

        session = await self.get_session(session_id)
        self.auth.verify(proof, session, audience)
        self._ensure_active(session)
        if provider != session.provider or route_id != session.route_id:
            raise ConflictError("Provider or routeId does not match this session")
        if not session.route.is_executable:
            raise ConflictError(NOT_EXECUTABLE_MESSAGE)

        step = self._require_step(session, step_index)
        self.policy.ensure_kind_allowed(step.chain_kind)
        if step.status not in (StepStatus.IDLE, StepStatus.SIGNING):
            raise ConflictError(f"Step {step_index} is already {step.status.value}")

        adapter = self._adapter_for_step(session, step_index)
        context = StepTxContext(
            execution=session.execution_context,
            source_address=session.source_address,
            solana_address=session.solana_address,
            route=session.route,
            step=session.route.steps[step_index],
        )
        try:
            tx_request = await asyncio.wait_for(
                adapter.get_step_tx(session.route_id, step_index, context),
                timeout=self.provider_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                adapter.name.value,
                f"Timed out building step transaction after {self.provider_timeout_s}s",
                ProviderErrorKind.TRANSIENT,
            ) from exc

        tx_kind = ChainKind(tx_request.kind)
        if tx_kind != step.chain_kind:
            logger.warning(
                f"Session {session_id} step {step_index}: {adapter.name.value} built a "
                f"{tx_kind.value} transaction for a {step.chain_kind.value} step"
            )
            raise ProviderError(
                adapter.name.value,
                f"Step {step_index} transaction is {tx_kind.value}, expected {step.chain_kind.value}",
            )
        self.policy.ensure_kind_allowed(tx_kind)

        async with self._get_lock(session_id):
            current = await self.get_session(session_id)
            self._ensure_active(current)
            current_step = self._require_step(current, step_index)
            if current_step.status == StepStatus.IDLE:
                await self.store.update_step(
                    session_id,
                    step_index,
                    expected_status=StepStatus.IDLE,
                    expected_hash=current_step.tx_hash_or_sig,
                    status=StepStatus.SIGNING,
                    tx_hash_or_sig=current_step.tx_hash_or_sig,
                )
                logger.info(f"Session {session_id} step {step_index}: idle -> signing")
            elif current_step.status != StepStatus.SIGNING:
                raise ConflictError(f"Step {step_index} is already {current_step.status.value}")

        return tx_request

    # =========================================================================
    # Status reports
    # =========================================================================

    async def report_step_status(
        self,
        session_id: str,
        step_index: int,
        status: StepStatus,
        tx_hash_or_sig: Optional[str],
        proof: Optional["SessionAuthProof"],
        audience: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Step:
        """
        Apply a client-reported step status.

        Identical repeats succeed without writing. The first recorded hash
        wins; a different hash for the same step is a ConflictError.
        """
        status = StepStatus(status)
        if status not in REPORTABLE_STATUSES:
            raise ValidationError(f"Status {status.value} cannot be reported by clients")
        tx = (tx_hash_or_sig or "").strip() or None
        if status == StepStatus.SUBMITTED and not tx:
            raise ValidationError("txHashOrSig is required when status is submitted")

        session = await self.get_session(session_id)
        self.auth.verify(proof, session, audience)
        step = self._require_step(session, step_index)
        if status != StepStatus.FAILED:
            self.policy.ensure_kind_allowed(step.chain_kind)

        verified_hash: Optional[str] = None
        if (
            status in (StepStatus.CONFIRMED, StepStatus.COMPLETED)
            and step.status != status
            and step.chain_kind in self.auto_reconcile_kinds
        ):
            verified_hash = tx or step.tx_hash_or_sig
            if not verified_hash:
                raise ValidationError("txHashOrSig is required to confirm a step")
            try:
                result = await self.verifier.verify(
                    step.chain_kind,
                    verified_hash,
                    chain_id=step.chain_id,
                    expected_sender=self._expected_sender(session, step),
                )
            except Exception as exc:
                logger.warning(f"Session {session_id} step {step_index} finality check errored: {exc}")
                raise FinalityPendingError("Transaction finality could not be checked; retry later") from exc
            if not result.ok:
                raise FinalityPendingError(result.reason or "Transaction is not final yet")

        async with self._get_lock(session_id):
            session = await self.get_session(session_id)
            step = self._require_step(session, step_index)
            if session.status == SessionStatus.FAILED:
                raise ConflictError("Session has already failed")

            recorded = step.tx_hash_or_sig
            if tx and recorded and tx != recorded:
                raise ConflictError(f"A different transaction is already recorded for step {step_index}")
            new_hash = recorded or tx
            if verified_hash and new_hash != verified_hash:
                raise ConflictError(f"Step {step_index} transaction changed during verification")

            if step.status == status:
                return step

            if session.status == SessionStatus.COMPLETED:
                raise ConflictError("Session is already completed")
            if status == StepStatus.FAILED and step.status not in (StepStatus.SIGNING, StepStatus.SUBMITTED):
                raise ConflictError(f"Cannot fail step {step_index} from {step.status.value}")
            if status in (StepStatus.CONFIRMED, StepStatus.COMPLETED) and not new_hash:
                raise ValidationError("txHashOrSig is required to confirm a step")
            StepStateMachine.validate(step.status, status)

            updated = await self._apply_step_status(
                session,
                step,
                status,
                new_hash,
                error_message=(error_message or f"Step {step_index} failed") if status == StepStatus.FAILED else None,
            )

        logger.info(f"Session {session_id} step {step_index}: {step.status.value} -> {status.value}")
        return updated

    async def _apply_step_status(
        self,
        session: Session,
        step: Step,
        status: StepStatus,
        tx_hash_or_sig: Optional[str],
        error_message: Optional[str] = None,
    ) -> Step:
        """Write one step transition and the recomputed session aggregate. Caller holds the lock."""
        updated = await self.store.update_step(
            session.id,
            step.index,
            expected_status=step.status,
            expected_hash=step.tx_hash_or_sig,
            status=status,
            tx_hash_or_sig=tx_hash_or_sig,
        )
        session.steps = [updated if s.index == updated.index else s for s in session.steps]
        session.updated_at = updated.updated_at
        recompute_session_status(session, error_message=error_message)
        await self.store.save_aggregate(session)
        return updated

    def _expected_sender(self, session: Session, step: Step) -> Optional[str]:
        if step.chain_kind == ChainKind.EVM and session.execution_context.source_chain_kind == ChainKind.EVM:
            return session.source_address
        return None

    # =========================================================================
    # Finality reconciliation
    # =========================================================================

    async def reconcile_finality(self, session_id: str) -> Session:
        """
        Confirm submitted steps the server can verify itself. Negative or
        inconclusive results, and verifier errors, leave state unchanged.
        """
        session = await self.get_session(session_id)
        if session.is_terminal:
            return session

        for step in session.steps:
            if step.status != StepStatus.SUBMITTED or not step.tx_hash_or_sig:
                continue
            if step.chain_kind not in self.auto_reconcile_kinds:
                continue

            try:
                result = await self.verifier.verify(
                    step.chain_kind,
                    step.tx_hash_or_sig,
                    chain_id=step.chain_id,
                    expected_sender=self._expected_sender(session, step),
                )
            except Exception as exc:
                logger.warning(f"Session {session_id} step {step.index} finality check errored: {exc}")
                continue
            if not result.ok:
                logger.debug(f"Session {session_id} step {step.index} not final: {result.reason}")
                continue

            async with self._get_lock(session_id):
                current = await self.get_session(session_id)
                current_step = self._require_step(current, step.index)
                if current.is_terminal:
                    break
                if (
                    current_step.status != StepStatus.SUBMITTED
                    or current_step.tx_hash_or_sig != step.tx_hash_or_sig
                ):
                    continue
                try:
                    await self._apply_step_status(
                        current, current_step, StepStatus.CONFIRMED, current_step.tx_hash_or_sig
                    )
                except ConflictError as exc:
                    logger.info(f"Session {session_id} step {step.index} changed during reconcile: {exc}")
                    continue
            logger.info(
                f"Session {session_id} step {step.index}: submitted -> confirmed ({result.finality})"
            )

        return await self.get_session(session_id)

    async def reconcile_all(self) -> int:
        """Reconcile every live session with submitted steps. Returns sessions checked."""
        session_ids = await self.store.list_reconcilable()
        for session_id in session_ids:
            try:
                await self.reconcile_finality(session_id)
            except NotFoundError:
                continue
            except Exception as exc:
                logger.exception(f"Reconcile failed for session {session_id}: {exc}")
                continue
        return len(session_ids)

    async def wait_for_step_finality(
        self,
        session_id: str,
        step_index: int,
        timeout_s: Optional[float] = None,
        poll_interval_s: Optional[float] = None,
    ) -> Session:
        """
        Poll until the step is final or failed, bounded by ``timeout_s``.

        Returns immediately when there is nothing the server can wait on
        (step not submitted, or a chain kind confirmed by client report only).

        Raises:
            FinalityTimeoutError: the step is still unconfirmed at the deadline
        """
        timeout_s = settings.status_wait_timeout_seconds if timeout_s is None else timeout_s
        poll_interval_s = settings.status_wait_poll_seconds if poll_interval_s is None else poll_interval_s
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s

        while True:
            session = await self.reconcile_finality(session_id)
            step = self._require_step(session, step_index)
            if session.is_terminal or step.status != StepStatus.SUBMITTED:
                return session
            if step.chain_kind not in self.auto_reconcile_kinds:
                return session

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise FinalityTimeoutError(f"Step {step_index} is not confirmed yet; retry later")
            await asyncio.sleep(min(poll_interval_s, remaining))


_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get the singleton session manager wired with the default collaborators."""
    global _session_manager
    if _session_manager is None:
        from ...auth.session_auth import get_session_auth_service
        from ...providers.registry import get_provider_registry
        from ...services.finality import get_finality_verifier
        from .store import InMemorySessionStore

        _session_manager = SessionManager(
            store=InMemorySessionStore(),
            registry=get_provider_registry(),
            auth=get_session_auth_service(),
            verifier=get_finality_verifier(),
        )
    return _session_manager
