"""Transfer security API endpoints.

Interaction-window timing, pre-sign evaluation, email verification
challenges, and read-only behavior profile views.
"""

import structlog
from fastapi import APIRouter, Depends, Request

from txguard.domains.security.models import (
    EmailRegisterRequest,
    EvaluateTransactionRequest,
    InteractionEndRequest,
    InteractionEventRequest,
    InteractionStartRequest,
    RecordTransactionRequest,
    TransactionRequest,
    VerificationConfirmRequest,
    VerificationSubmitRequest,
    mask_email,
)
from txguard.domains.security.service import SecurityEngine

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/security", tags=["security"])


def get_engine(request: Request) -> SecurityEngine:
    return request.app.state.security_engine


def _transaction(body: EvaluateTransactionRequest) -> TransactionRequest:
    return TransactionRequest(**body.model_dump(exclude={"session_id"}))


# --- Interaction Window Endpoints ---


@router.post("/interactions/start")
async def start_interaction(
    body: InteractionStartRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    handle = await engine.start_interaction(body.session_id, body.kind)
    return {"success": True, **handle.model_dump(mode="json")}


@router.post("/interactions/event")
async def record_interaction_event(
    body: InteractionEventRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    count = await engine.record_interaction_event(body.session_id, body.kind, body.interaction_type)
    return {"success": True, "interaction_count": count}


@router.post("/interactions/end")
async def end_interaction(
    body: InteractionEndRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.end_interaction(
        body.session_id,
        body.kind,
        successful=body.successful,
        completed_transfer=body.completed_transfer,
    )
    return {"success": True, **result.model_dump(mode="json")}


@router.get("/interactions/{session_id}/{kind}")
async def get_interaction_status(
    session_id: str,
    kind: str,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    snapshot = await engine.interaction_status(session_id, kind)
    return {
        "session_id": session_id,
        "kind": kind,
        "active": snapshot.found,
        "elapsed_seconds": round(snapshot.elapsed_seconds, 2) if snapshot.found else None,
        "interaction_count": snapshot.interaction_count,
        "started_at": snapshot.started_at.isoformat() if snapshot.started_at else None,
    }


# --- Transaction Endpoints ---


@router.post("/transactions/analyze")
async def analyze_transaction(
    body: EvaluateTransactionRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    """Dry-run risk assessment. Nothing is issued or recorded."""
    assessment = await engine.analyze_transaction(body.session_id, _transaction(body))
    return assessment.model_dump(mode="json")


@router.post("/transactions/evaluate")
async def evaluate_transaction(
    body: EvaluateTransactionRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.evaluate_transaction(body.session_id, _transaction(body))
    return result.model_dump(mode="json")


@router.post("/transactions/record")
async def record_transaction(
    body: RecordTransactionRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    update = await engine.record_transaction(body.session_id, body, kind="manual")
    return {
        "success": True,
        "session_id": body.session_id,
        "total_transactions": update.profile.total_transactions,
        "average_amount": update.profile.amount_mean,
        "persisted": update.persisted,
    }


# --- Verification Endpoints ---


@router.post("/verification/submit")
async def submit_verification_code(
    body: VerificationSubmitRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.submit_verification_code(body.token_id, body.code)
    result.raise_for_status()
    return {
        "success": True,
        "status": result.status.value,
        "token_id": result.token_id,
        "transaction": result.tx_snapshot,
    }


@router.post("/verification/confirm")
async def confirm_after_verification(
    body: VerificationConfirmRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.confirm_after_verification(body.token_id)
    return result.model_dump(mode="json")


@router.get("/verification/{token_id}")
async def get_token_status(
    token_id: str,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    status = await engine.token_status(token_id)
    return status.model_dump(mode="json")


# --- Profile Endpoints ---


@router.post("/email")
async def register_verification_email(
    body: EmailRegisterRequest,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    summary = await engine.register_verification_email(
        body.session_id, body.email, wallet_fingerprint=body.wallet_fingerprint
    )
    return {
        "success": True,
        "session_id": body.session_id,
        "email": mask_email(body.email),
        "email_verified": summary.email_verified,
    }


@router.get("/profiles/{session_id}")
async def get_behavior_profile_summary(
    session_id: str,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    summary = await engine.get_behavior_profile_summary(session_id)
    return summary.model_dump(mode="json")


@router.get("/config")
async def get_security_config(
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    return engine.get_security_config()


@router.delete("/sessions/{session_id}")
async def discard_session(
    session_id: str,
    engine: SecurityEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    removed = await engine.discard_session(session_id)
    return {"success": True, "session_id": session_id, **removed}
