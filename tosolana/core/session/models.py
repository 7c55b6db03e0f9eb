"""
Session Models

A Session is one attempt to execute a chosen route. It owns one Step per
route step, created together with the session and never added or removed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ...errors import ConflictError
from ..bridge.models import QuoteRequest, Route
from ..chain_types import ChainId, ChainKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Aggregate state of a session, derived from its steps."""

    QUOTED = "quoted"          # Created, nothing submitted yet
    BRIDGING = "bridging"      # At least one step submitted, not all finished
    COMPLETED = "completed"    # Every step confirmed/completed
    FAILED = "failed"          # Sticky


class StepStatus(str, Enum):
    IDLE = "idle"
    SIGNING = "signing"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_SESSION_STATES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED})
FINISHED_STEP_STATES = frozenset({StepStatus.CONFIRMED, StepStatus.COMPLETED})


@dataclass
class ExecutionContext:
    """Everything needed to rebuild provider calls without trusting the client.

    Stored with the session as a typed structure. ``schema_version`` lets
    future fields be added without guessing at old records.
    """

    SCHEMA_VERSION = 1

    source_chain_id: ChainId
    source_chain_kind: ChainKind
    source_token: str
    source_amount: str
    destination_token: str
    slippage: float = 3.0
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def from_quote_request(cls, request: QuoteRequest) -> "ExecutionContext":
        return cls(
            source_chain_id=request.source_chain_id,
            source_chain_kind=request.chain_kind,
            source_token=request.source_token_address,
            source_amount=request.source_amount,
            destination_token=request.destination_token_address,
            slippage=request.slippage,
        )

    def to_quote_request(self, source_address: str, solana_address: str) -> QuoteRequest:
        return QuoteRequest(
            source_chain_id=self.source_chain_id,
            source_chain_type=self.source_chain_kind,
            source_token_address=self.source_token,
            source_amount=self.source_amount,
            destination_token_address=self.destination_token,
            source_address=source_address,
            solana_address=solana_address,
            slippage=self.slippage,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "sourceChainId": self.source_chain_id,
            "sourceChainType": self.source_chain_kind.value,
            "sourceToken": self.source_token,
            "sourceAmount": self.source_amount,
            "destinationToken": self.destination_token,
            "slippage": self.slippage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionContext":
        version = int(data.get("schemaVersion", 1))
        if version > cls.SCHEMA_VERSION:
            raise ValueError(f"Unsupported execution context version: {version}")
        return cls(
            source_chain_id=data["sourceChainId"],
            source_chain_kind=ChainKind(data["sourceChainType"]),
            source_token=data["sourceToken"],
            source_amount=data["sourceAmount"],
            destination_token=data["destinationToken"],
            slippage=float(data.get("slippage", 3.0)),
            schema_version=version,
        )


@dataclass
class Step:
    """One signable transaction within a session."""

    index: int
    chain_kind: ChainKind
    chain_id: Optional[ChainId] = None
    status: StepStatus = StepStatus.IDLE
    tx_hash_or_sig: Optional[str] = None
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STEP_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "chainType": self.chain_kind.value,
            "chainId": self.chain_id,
            "status": self.status.value,
            "txHashOrSig": self.tx_hash_or_sig,
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class Session:
    source_address: str
    solana_address: str
    provider: str
    route_id: str
    route: Route
    execution_context: ExecutionContext
    id: str = field(default_factory=lambda: uuid4().hex)
    status: SessionStatus = SessionStatus.QUOTED
    current_step: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    steps: List[Step] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATES

    def get_step(self, index: int) -> Optional[Step]:
        for step in self.steps:
            if step.index == index:
                return step
        return None


class InvalidTransitionError(ConflictError):
    """Raised when a step status change is not allowed."""

    def __init__(
        self,
        from_state: StepStatus,
        to_state: StepStatus,
        message: Optional[str] = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message or f"Cannot transition from {from_state.value} to {to_state.value}")
