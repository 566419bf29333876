"""Transfer risk engine facade.

Owns one instance of every stateful component and exposes the operations
the wallet flow calls. Built once per process in the application lifespan
and handed to routes through ``app.state``.
"""

import asyncio
from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime
from typing import Any

import structlog

from .anomaly import StatisticalAnomalyDetector
from .config import SecurityConfig, default_config
from .email import EmailSender, LoggingEmailSender
from .errors import DependencyError, NotFoundError
from .events import SecurityEventPublisher
from .gate import PreSignGate
from .models import (
    CompletedTransfer,
    GateResult,
    InteractionEndResult,
    InteractionHandle,
    ProfileSummary,
    RiskAssessment,
    TimingSnapshot,
    TokenStatus,
    TransactionRequest,
    VerificationResult,
)
from .profile_store import BehaviorProfileStore, ProfileUpdate
from .repository import ProfileRepository
from .scoring import RiskScoringEngine
from .timing import ModalTimingTracker
from .verification import VerificationChallengeStateMachine

logger = structlog.get_logger()


class SecurityEngine:
    def __init__(
        self,
        config: SecurityConfig | None = None,
        repository: ProfileRepository | None = None,
        email_sender: EmailSender | None = None,
        events: SecurityEventPublisher | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
        local_clock: Callable[[], datetime] | None = None,
        sweep_interval_seconds: float = 60.0,
    ) -> None:
        self.config = config or default_config
        self.email_sender = email_sender or LoggingEmailSender()
        self.events = events or SecurityEventPublisher(clock=clock)

        self.profiles = BehaviorProfileStore(repository=repository, config=self.config, clock=clock)
        self.timing = ModalTimingTracker(monotonic=monotonic, clock=clock)
        self.detector = StatisticalAnomalyDetector(self.config)
        self.scoring = RiskScoringEngine(
            self.profiles,
            self.timing,
            config=self.config,
            detector=self.detector,
            clock=clock,
            local_clock=local_clock,
        )
        self.challenges = VerificationChallengeStateMachine(self.config, clock=clock)
        self.gate = PreSignGate(
            self.scoring,
            self.profiles,
            self.challenges,
            email_sender=self.email_sender,
            events=self.events,
        )

        self._sweep_interval = sweep_interval_seconds
        self._sweep_task: asyncio.Task | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("security_engine_started", config_version=self.config.version)

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.email_sender.close()
        await self.profiles.repository.close()
        logger.info("security_engine_stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.challenges.sweep_expired()
            except Exception:
                logger.exception("verification_token_sweep_failed")

    # --- Interaction windows ---

    async def start_interaction(self, session_id: str, kind: str = "transfer") -> InteractionHandle:
        return await self.timing.start(session_id, kind)

    async def record_interaction_event(
        self, session_id: str, kind: str = "transfer", interaction_type: str = "generic"
    ) -> int:
        count = await self.timing.record_interaction(session_id, kind, interaction_type)
        if count is None:
            raise NotFoundError("No active interaction window", session_id=session_id, kind=kind)
        return count

    async def end_interaction(
        self,
        session_id: str,
        kind: str = "transfer",
        successful: bool = True,
        completed_transfer: CompletedTransfer | None = None,
    ) -> InteractionEndResult:
        """Close a window; a successful send feeds the baseline. Never raises."""
        result = await self.timing.end(session_id, kind, successful)
        if not (successful and completed_transfer is not None):
            return result

        try:
            update = await self.profiles.record_completed_transfer(
                session_id,
                completed_transfer,
                duration_seconds=result.duration_seconds if result.found else None,
                interaction_count=result.interaction_count if result.found else None,
                kind=kind,
            )
        except DependencyError as exc:
            logger.warning("behavior_feedback_failed", session_id=session_id, error=exc.message)
            return result

        return result.model_copy(update={"profile_updated": True, "persisted": update.persisted})

    async def interaction_status(self, session_id: str, kind: str = "transfer") -> TimingSnapshot:
        return await self.timing.snapshot(session_id, kind)

    # --- Transfers ---

    async def analyze_transaction(self, session_id: str, tx: TransactionRequest) -> RiskAssessment:
        return await self.gate.analyze(session_id, tx)

    async def evaluate_transaction(self, session_id: str, tx: TransactionRequest) -> GateResult:
        return await self.gate.evaluate(session_id, tx)

    async def record_transaction(
        self, session_id: str, transfer: CompletedTransfer, kind: str = "transfer"
    ) -> ProfileUpdate:
        return await self.profiles.record_completed_transfer(session_id, transfer, kind=kind)

    # --- Verification ---

    async def submit_verification_code(self, token_id: str, code: str) -> VerificationResult:
        return await self.gate.submit_code(token_id, code)

    async def confirm_after_verification(self, token_id: str) -> GateResult:
        return await self.gate.confirm_after_verification(token_id)

    async def token_status(self, token_id: str) -> TokenStatus:
        return await self.challenges.status(token_id)

    # --- Profile ---

    async def register_verification_email(
        self, session_id: str, email: str, wallet_fingerprint: str | None = None
    ) -> ProfileSummary:
        await self.profiles.register_email(session_id, email, fingerprint=wallet_fingerprint)
        return await self.profiles.summary(session_id)

    async def get_behavior_profile_summary(self, session_id: str) -> ProfileSummary:
        return await self.profiles.summary(session_id)

    def get_security_config(self) -> dict[str, Any]:
        return asdict(self.config)

    async def discard_session(self, session_id: str) -> dict[str, int]:
        """Drop a session's open windows, pending challenges and cached profile."""
        windows = await self.timing.discard_session(session_id)
        challenges = await self.challenges.discard_session(session_id)
        profiles = int(await self.profiles.evict(session_id))
        logger.info(
            "security_session_discarded",
            session_id=session_id,
            windows=windows,
            challenges=challenges,
            profile_evicted=bool(profiles),
        )
        return {"windows": windows, "challenges": challenges, "profiles": profiles}
