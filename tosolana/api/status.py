from typing import Any, Dict, Optional

from fastapi import APIRouter, Query

from ..config import settings
from ..core.session.manager import get_session_manager
from ..core.session.models import Session

router = APIRouter()


def _status_payload(session: Session) -> Dict[str, Any]:
    return {
        "sessionId": session.id,
        "status": session.status.value,
        "currentStep": session.current_step,
        "errorMessage": session.error_message,
        "steps": [
            {
                "index": step.index,
                "chainType": step.chain_kind.value,
                "status": step.status.value,
                "txHashOrSig": step.tx_hash_or_sig,
            }
            for step in session.steps
        ],
    }


@router.get("/status")
async def get_status(
    session_id: str = Query(..., alias="sessionId", min_length=1),
    wait_for_step: Optional[int] = Query(None, alias="waitForStep", ge=0),
) -> Dict[str, Any]:
    """
    Session and step status.

    Submitted steps on server-verifiable chains are reconciled before the
    response. With ``waitForStep`` the call blocks (bounded) until that step
    is final and answers 504 if it is not.
    """
    manager = get_session_manager()
    if wait_for_step is not None:
        session = await manager.wait_for_step_finality(
            session_id,
            wait_for_step,
            timeout_s=settings.status_wait_timeout_seconds,
            poll_interval_s=settings.status_wait_poll_seconds,
        )
    else:
        session = await manager.reconcile_finality(session_id)
    return _status_payload(session)
