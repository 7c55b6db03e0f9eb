"""
Session execution endpoints.

POST /execute/step is overloaded by payload shape. The first match wins:

1. create-session  - carries ``route`` and no ``sessionId``
2. update-step     - ``sessionId`` + ``status``
3. get-transaction - ``sessionId`` + ``stepIndex``
"""

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Body, Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..auth.models import SessionAuthProof
from ..core.bridge.models import QuoteRequest, Route
from ..core.chain_types import ChainId, ChainKind
from ..core.session.manager import get_session_manager
from ..core.session.models import StepStatus
from ..errors import ValidationError

router = APIRouter(prefix="/execute")


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_address: str = Field(..., alias="sourceAddress", min_length=1)
    solana_address: str = Field(..., alias="solanaAddress", min_length=1)
    provider: str = Field(..., min_length=1)
    route_id: str = Field(..., alias="routeId", min_length=1)
    route: Route
    source_chain_id: ChainId = Field(..., alias="sourceChainId")
    source_chain_type: Optional[ChainKind] = Field(None, alias="sourceChainType")
    source_token: str = Field(..., alias="sourceToken", min_length=1)
    source_amount: str = Field(..., alias="sourceAmount", min_length=1)
    dest_token: str = Field(..., alias="destToken", min_length=1)
    slippage: float = Field(3.0, ge=0.1, le=50)

    def to_quote_request(self) -> QuoteRequest:
        return QuoteRequest(
            source_chain_id=self.source_chain_id,
            source_chain_type=self.source_chain_type,
            source_token_address=self.source_token,
            source_amount=self.source_amount,
            destination_token_address=self.dest_token,
            source_address=self.source_address,
            solana_address=self.solana_address,
            slippage=self.slippage,
        )


class UpdateStepRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    step_index: int = Field(..., alias="stepIndex", ge=0)
    status: Literal["submitted", "confirmed", "completed", "failed"]
    tx_hash_or_sig: Optional[str] = Field(None, alias="txHashOrSig")
    error_message: Optional[str] = Field(None, alias="errorMessage", max_length=500)
    session_auth: Optional[SessionAuthProof] = Field(None, alias="sessionAuth")


class GetTxRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    provider: str = Field(..., min_length=1)
    route_id: str = Field(..., alias="routeId", min_length=1)
    step_index: int = Field(..., alias="stepIndex", ge=0)
    session_auth: Optional[SessionAuthProof] = Field(None, alias="sessionAuth")


class ChallengeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)


def _audience(request: Request) -> Optional[str]:
    host = request.headers.get("host")
    return host.strip().lower() if host else None


def _parse(model: type, payload: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


async def _create_session(payload: Dict[str, Any], audience: Optional[str]) -> Dict[str, Any]:
    body: CreateSessionRequest = _parse(CreateSessionRequest, payload)
    try:
        quote_request = body.to_quote_request()
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    session, challenge = await get_session_manager().create_session(
        quote_request,
        body.route,
        provider=body.provider,
        route_id=body.route_id,
        audience=audience,
    )
    return {
        "sessionId": session.id,
        "status": session.status.value,
        "sessionAuthChallenge": challenge.model_dump(by_alias=True),
        "steps": [step.to_dict() for step in session.steps],
    }


async def _update_step(payload: Dict[str, Any], audience: Optional[str]) -> Dict[str, Any]:
    body: UpdateStepRequest = _parse(UpdateStepRequest, payload)
    step = await get_session_manager().report_step_status(
        body.session_id,
        body.step_index,
        StepStatus(body.status),
        body.tx_hash_or_sig,
        body.session_auth,
        audience=audience,
        error_message=body.error_message,
    )
    return {"success": True, "step": step.to_dict()}


async def _get_transaction(payload: Dict[str, Any], audience: Optional[str]) -> Dict[str, Any]:
    body: GetTxRequest = _parse(GetTxRequest, payload)
    tx_request = await get_session_manager().request_step_transaction(
        body.session_id,
        body.step_index,
        provider=body.provider,
        route_id=body.route_id,
        proof=body.session_auth,
        audience=audience,
    )
    return {
        "sessionId": body.session_id,
        "stepIndex": body.step_index,
        "txRequest": tx_request.model_dump(by_alias=True, exclude_none=True),
    }


@router.post("/step")
async def execute_step(request: Request, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    audience = _audience(request)

    if "route" in payload and "sessionId" not in payload:
        return await _create_session(payload, audience)
    if "sessionId" in payload and "status" in payload:
        return await _update_step(payload, audience)
    if "sessionId" in payload and "stepIndex" in payload:
        return await _get_transaction(payload, audience)

    raise ValidationError("Invalid request: expected create-session, update-step or get-transaction payload")


@router.post("/challenge")
async def reissue_challenge(request: Request, body: ChallengeRequest) -> Dict[str, Any]:
    """Issue a fresh session challenge, e.g. after the previous one expired."""
    challenge = await get_session_manager().issue_challenge(body.session_id, _audience(request))
    return {
        "sessionId": body.session_id,
        "sessionAuthChallenge": challenge.model_dump(by_alias=True),
    }
