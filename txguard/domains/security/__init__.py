"""Behavioral transfer risk domain."""

from .anomaly import StatisticalAnomalyDetector
from .config import SecurityConfig, default_config
from .gate import PreSignGate
from .models import (
    BehaviorProfile,
    GateDecision,
    GateResult,
    RiskAssessment,
    RiskLevel,
    TransactionRequest,
    VerificationResult,
)
from .profile_store import BehaviorProfileStore
from .scoring import RiskScoringEngine
from .service import SecurityEngine
from .timing import ModalTimingTracker
from .verification import VerificationChallengeStateMachine

__all__ = [
    "BehaviorProfile",
    "BehaviorProfileStore",
    "GateDecision",
    "GateResult",
    "ModalTimingTracker",
    "PreSignGate",
    "RiskAssessment",
    "RiskLevel",
    "RiskScoringEngine",
    "SecurityConfig",
    "SecurityEngine",
    "StatisticalAnomalyDetector",
    "TransactionRequest",
    "VerificationChallengeStateMachine",
    "VerificationResult",
    "default_config",
]
