"""Risk scoring engine: the decision core of the pre-sign gate.

Combines five independent 0-100 sub-scores into one weighted composite:

    amount_ratio         amount / balance tier
    address_novelty      first-time counterparty checks
    statistical_anomaly  amount z-score, duration z-score, rapid/sweeping flags
    time_of_day          local-hour band
    behavior_timing      interaction-window pace and interaction count

The composite maps to a risk level and recommended action through a fixed,
versioned threshold table. Behavioral-timing red flags (too fast, no
interaction window, too few interactions) force email verification no
matter how low the blended score is.
"""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from .anomaly import StatisticalAnomalyDetector
from .config import SecurityConfig, default_config
from .heuristics import score_address_novelty, score_amount_ratio, score_time_of_day
from .models import (
    BehaviorProfile,
    FeatureScore,
    RecommendedAction,
    RiskAssessment,
    RiskLevel,
    TimingDetails,
    TimingSnapshot,
    TransactionRequest,
)
from .profile_store import BehaviorProfileStore
from .timing import ModalTimingTracker

logger = structlog.get_logger()


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def direct_invocation_penalty(
    profile: BehaviorProfile, config: SecurityConfig
) -> tuple[FeatureScore, TimingDetails]:
    """DirectInvocationPenalty: signing without ever opening the interaction window.

    Missing timing data is treated as a strong signal, never as "no data".
    """
    score = FeatureScore(
        feature="behavior_timing",
        score=config.timing.direct_invocation_score,
        weight=config.weights.behavior_timing,
        flags=["direct_invocation"],
        reasons=["No interaction window was opened before signing"],
        details={"session_found": False},
    )
    details = TimingDetails(
        session_found=False,
        average_duration=profile.average_duration,
        direct_invocation=True,
        requires_verification=True,
    )
    return score, details


def score_behavior_timing(
    snapshot: TimingSnapshot, profile: BehaviorProfile, config: SecurityConfig
) -> tuple[FeatureScore, TimingDetails]:
    if not snapshot.found:
        return direct_invocation_penalty(profile, config)

    cfg = config.timing
    elapsed = snapshot.elapsed_seconds
    average = profile.average_duration
    ratio = elapsed / average if average > 0 else None

    flags: list[str] = []
    reasons: list[str] = []
    requires_verification = False

    if ratio is None:
        score = cfg.normal_score
    elif ratio <= cfg.critical_speed_ratio:
        score = cfg.critical_score
        requires_verification = True
        flags.append("very_fast_transaction")
        reasons.append(f"Completed in {elapsed:.0f}s (usual: {average:.0f}s)")
    elif ratio <= cfg.suspicious_speed_ratio:
        score = cfg.suspicious_score
        requires_verification = True
        flags.append("fast_transaction")
        reasons.append(f"Faster than usual: {elapsed:.0f}s (usual: {average:.0f}s)")
    elif ratio <= cfg.moderate_speed_ratio:
        score = cfg.moderate_score
        flags.append("moderately_fast_transaction")
        reasons.append(f"Quicker than average: {elapsed:.0f}s")
    else:
        score = cfg.normal_score

    if (
        snapshot.interaction_count < cfg.low_interaction_count
        and elapsed > cfg.low_interaction_min_seconds
    ):
        score += cfg.low_interaction_penalty
        requires_verification = True
        flags.append("zero_interaction" if snapshot.interaction_count == 0 else "low_interaction")
        reasons.append(
            f"Only {snapshot.interaction_count} interaction(s) recorded, possible scripted input"
        )

    feature = FeatureScore(
        feature="behavior_timing",
        score=_clamp(score),
        weight=config.weights.behavior_timing,
        flags=flags,
        reasons=reasons,
        details={
            "session_found": True,
            "elapsed_seconds": elapsed,
            "average_duration": average,
            "speed_ratio": ratio,
            "interaction_count": snapshot.interaction_count,
        },
    )
    details = TimingDetails(
        session_found=True,
        duration_seconds=elapsed,
        average_duration=average,
        speed_ratio=ratio,
        interaction_count=snapshot.interaction_count,
        requires_verification=requires_verification,
    )
    return feature, details


def classify(total: float, config: SecurityConfig) -> tuple[RiskLevel, RecommendedAction]:
    thresholds = config.thresholds
    if total <= thresholds.low_max:
        return RiskLevel.LOW, RecommendedAction.ALLOW
    if total <= thresholds.medium_max:
        return RiskLevel.MEDIUM, RecommendedAction.WARN
    if total <= thresholds.high_max:
        return RiskLevel.HIGH, RecommendedAction.CONFIRM
    return RiskLevel.CRITICAL, RecommendedAction.EMAIL_VERIFY


class RiskScoringEngine:
    """Evaluates a proposed transfer against the session's behavior."""

    def __init__(
        self,
        profile_store: BehaviorProfileStore,
        timing_tracker: ModalTimingTracker,
        config: SecurityConfig | None = None,
        detector: StatisticalAnomalyDetector | None = None,
        clock: Callable[[], datetime] | None = None,
        local_clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or default_config
        self._profiles = profile_store
        self._timing = timing_tracker
        self._detector = detector or StatisticalAnomalyDetector(self._config)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._local_clock = local_clock or (lambda: datetime.now().astimezone())

    @property
    def config(self) -> SecurityConfig:
        return self._config

    async def evaluate(self, session_id: str, tx: TransactionRequest) -> RiskAssessment:
        """Score a transfer. Read-only: neither the profile nor the window changes."""
        profile = await self._profiles.get_profile(session_id)
        snapshot = await self._timing.snapshot(session_id, tx.interaction_kind)
        return self.assess(session_id, tx, profile, snapshot)

    def assess(
        self,
        session_id: str,
        tx: TransactionRequest,
        profile: BehaviorProfile,
        snapshot: TimingSnapshot,
    ) -> RiskAssessment:
        now = self._clock()

        amount_score = score_amount_ratio(tx.amount, tx.balance, self._config)
        address_score = score_address_novelty(tx.recipient, tx.amount, profile, self._config)
        statistical_score = self._detector.score(
            tx.amount,
            profile,
            now,
            observed_seconds=snapshot.elapsed_seconds if snapshot.found else None,
        )
        time_score = score_time_of_day(self._local_clock(), self._config)
        timing_score, timing_details = score_behavior_timing(snapshot, profile, self._config)

        feature_scores = [amount_score, address_score, statistical_score, time_score, timing_score]
        total = round(_clamp(sum(f.weighted for f in feature_scores)), 2)

        risk_level, action = classify(total, self._config)
        if timing_details.requires_verification:
            action = RecommendedAction.EMAIL_VERIFY

        flags = [flag for f in feature_scores for flag in f.flags]
        reasons = [reason for f in feature_scores for reason in f.reasons]

        assessment = RiskAssessment(
            session_id=session_id,
            total_risk_score=total,
            risk_level=risk_level,
            recommended_action=action,
            requires_email_verification=action == RecommendedAction.EMAIL_VERIFY,
            feature_scores=feature_scores,
            flags=flags,
            reasons=reasons,
            timing_details=timing_details,
            config_version=self._config.version,
            evaluated_at=now,
        )

        logger.info(
            "transaction_risk_evaluated",
            session_id=session_id,
            total_risk_score=total,
            risk_level=risk_level.value,
            recommended_action=action.value,
            flags=flags,
            timing_forced=timing_details.requires_verification,
        )
        return assessment
