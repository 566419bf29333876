"""Pre-sign gate: the last check before a transfer reaches the signer.

Decisions:
    approved                     score below the verification boundary
    requires_email_registration  verification demanded but no email on file
    requires_verification        a challenge was issued and emailed
    rejected                     empty balance, or a failed confirmation
"""

from typing import Any

import structlog

from .email import EmailSender, LoggingEmailSender
from .errors import (
    DependencyError,
    ExpiredError,
    InsufficientBalanceError,
    NotFoundError,
    NotVerifiedError,
)
from .events import (
    CHALLENGE_ISSUED,
    TRANSFER_REJECTED,
    TRANSFER_RELEASED,
    TRANSFER_VERIFIED,
    SecurityEventPublisher,
)
from .models import (
    ChallengeInfo,
    GateDecision,
    GateResult,
    RiskAssessment,
    TransactionRequest,
    VerificationResult,
    VerificationStatus,
    mask_email,
)
from .profile_store import BehaviorProfileStore
from .scoring import RiskScoringEngine
from .verification import VerificationChallengeStateMachine

logger = structlog.get_logger()


def _transaction_snapshot(
    session_id: str, tx: TransactionRequest, assessment: RiskAssessment
) -> dict[str, Any]:
    """The exact transfer a verified challenge is allowed to release."""
    return {
        "session_id": session_id,
        "recipient": tx.recipient,
        "amount": tx.amount,
        "balance": tx.balance,
        "token": tx.token,
        "interaction_kind": tx.interaction_kind,
        "risk_score": assessment.total_risk_score,
        "risk_level": assessment.risk_level.value,
        "flags": list(assessment.flags),
    }


class PreSignGate:
    def __init__(
        self,
        scoring_engine: RiskScoringEngine,
        profile_store: BehaviorProfileStore,
        challenges: VerificationChallengeStateMachine,
        email_sender: EmailSender | None = None,
        events: SecurityEventPublisher | None = None,
    ) -> None:
        self._scoring = scoring_engine
        self._profiles = profile_store
        self._challenges = challenges
        self._email = email_sender or LoggingEmailSender()
        self._events = events or SecurityEventPublisher()

    async def analyze(self, session_id: str, tx: TransactionRequest) -> RiskAssessment:
        """Dry run: score without issuing a challenge."""
        return await self._scoring.evaluate(session_id, tx)

    async def evaluate(self, session_id: str, tx: TransactionRequest) -> GateResult:
        assessment = await self._scoring.evaluate(session_id, tx)

        if tx.balance <= 0:
            error = InsufficientBalanceError(
                "Balance is empty or negative", balance=tx.balance, amount=tx.amount
            )
            logger.warning("transfer_rejected", session_id=session_id, reason=error.code)
            await self._events.publish(
                TRANSFER_REJECTED,
                session_id,
                {"reason": error.code, "risk_score": assessment.total_risk_score},
            )
            return GateResult(
                decision=GateDecision.REJECTED,
                session_id=session_id,
                message=error.message,
                assessment=assessment,
                error=error.to_dict(),
            )

        transaction = _transaction_snapshot(session_id, tx, assessment)

        if not assessment.requires_email_verification:
            logger.info(
                "transfer_approved",
                session_id=session_id,
                risk_score=assessment.total_risk_score,
                risk_level=assessment.risk_level.value,
            )
            return GateResult(
                decision=GateDecision.APPROVED,
                session_id=session_id,
                message="Transfer approved",
                assessment=assessment,
                transaction=transaction,
            )

        profile = await self._profiles.get_profile(session_id)
        email = profile.email
        if not email and tx.wallet_fingerprint:
            email = await self._profiles.restore_email(session_id, tx.wallet_fingerprint)

        if not email:
            logger.info("transfer_requires_email_registration", session_id=session_id)
            return GateResult(
                decision=GateDecision.REQUIRES_EMAIL_REGISTRATION,
                session_id=session_id,
                message="Register a verification email before this transfer can proceed",
                assessment=assessment,
            )

        challenge = await self._challenges.issue(session_id, email, transaction)
        delivery = await self._email.send(
            email,
            challenge.code,
            {"amount": tx.amount, "token": tx.token, "recipient": tx.recipient},
        )
        if not delivery.success:
            # A code nobody received must not stay redeemable
            await self._challenges.revoke(challenge.token_id)
            raise DependencyError(
                "Verification email could not be delivered",
                session_id=session_id,
                reason=delivery.error,
            )

        await self._events.publish(
            CHALLENGE_ISSUED,
            session_id,
            {
                "token_id": challenge.token_id,
                "risk_score": assessment.total_risk_score,
                "flags": assessment.flags,
            },
        )
        logger.info(
            "transfer_requires_verification",
            session_id=session_id,
            token_id=challenge.token_id,
            risk_score=assessment.total_risk_score,
        )
        return GateResult(
            decision=GateDecision.REQUIRES_VERIFICATION,
            session_id=session_id,
            message=f"Verification code sent to {mask_email(email)}",
            assessment=assessment,
            challenge=ChallengeInfo(
                token_id=challenge.token_id,
                email=mask_email(email),
                expires_at=challenge.expires_at,
                delivered=not delivery.demo_mode,
                demo_mode=delivery.demo_mode,
            ),
        )

    async def submit_code(self, token_id: str, code: str) -> VerificationResult:
        result = await self._challenges.attempt(token_id, code)
        if result.status == VerificationStatus.VERIFIED and result.tx_snapshot:
            await self._events.publish(
                TRANSFER_VERIFIED,
                result.tx_snapshot.get("session_id", ""),
                {"token_id": token_id},
            )
        return result

    async def confirm_after_verification(self, token_id: str) -> GateResult:
        """Release the transfer captured when the challenge was issued."""
        try:
            snapshot = await self._challenges.confirm(token_id)
        except (NotFoundError, ExpiredError, NotVerifiedError) as exc:
            logger.info("transfer_confirmation_rejected", token_id=token_id, reason=exc.code)
            return GateResult(
                decision=GateDecision.REJECTED,
                message=exc.message,
                error=exc.to_dict(),
            )

        session_id = snapshot.get("session_id")
        await self._events.publish(
            TRANSFER_RELEASED,
            session_id or "",
            {"token_id": token_id, "risk_score": snapshot.get("risk_score")},
        )
        logger.info("transfer_released", session_id=session_id, token_id=token_id)
        return GateResult(
            decision=GateDecision.APPROVED,
            session_id=session_id,
            message="Verification complete, transfer released",
            transaction=snapshot,
        )
