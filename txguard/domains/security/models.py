"""Pydantic models for the transfer risk domain."""

import math
import re
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import (
    AttemptsExhaustedError,
    ExpiredError,
    NotFoundError,
    ValidationError,
    WrongCodeError,
)

_ADDRESS_RE = re.compile(r"^[A-Za-z0-9]{20,128}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_address(address: str) -> str:
    """Validate a counterparty address and return its case-insensitive key."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address.strip()):
        raise ValidationError("Malformed recipient address", address=address)
    return address.strip().lower()


def validate_email(email: str) -> str:
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise ValidationError("Malformed email address")
    return email.strip()


def validate_amount(amount: float, field_name: str = "amount", allow_non_positive: bool = False) -> float:
    if amount is None or not math.isfinite(amount):
        raise ValidationError(f"{field_name} must be a finite number", **{field_name: amount})
    if not allow_non_positive and amount <= 0:
        raise ValidationError(f"{field_name} must be positive", **{field_name: amount})
    return float(amount)


def mask_email(email: str | None) -> str | None:
    if not email:
        return None
    return re.sub(r"^(.{3}).*@", r"\1***@", email)


def truncate_address(address: str | None) -> str:
    if not address:
        return "N/A"
    if len(address) <= 16:
        return address
    return f"{address[:8]}...{address[-6:]}"


# --- Enums ---


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedAction(StrEnum):
    ALLOW = "allow"
    WARN = "warn"
    CONFIRM = "confirm"
    EMAIL_VERIFY = "require_email_verification"


class GateDecision(StrEnum):
    APPROVED = "approved"
    REQUIRES_EMAIL_REGISTRATION = "requires_email_registration"
    REQUIRES_VERIFICATION = "requires_verification"
    REJECTED = "rejected"


class VerificationStatus(StrEnum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"
    WRONG_CODE = "wrong_code"
    EXPIRED = "expired"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    NOT_FOUND = "not_found"


# --- Profile Models ---


class TransactionRecord(BaseModel):
    amount: float
    counterparty: str
    duration_seconds: float | None = None
    interaction_count: int | None = None
    risk_score: float | None = None
    kind: str = "transfer"
    token: str = "ETH"
    timestamp: datetime


class BehaviorProfile(BaseModel):
    session_id: str
    email: str | None = None
    email_verified: bool = False
    average_duration: float = Field(default=120.0, gt=0)
    duration_std_dev: float = Field(default=0.0, ge=0)
    total_transactions: int = 0
    amount_mean: float = 0.0
    amount_std_dev: float = Field(default=0.0, ge=0)
    # normalized address -> interaction count
    known_addresses: dict[str, int] = Field(default_factory=dict)
    # most recent first
    recent_transactions: list[TransactionRecord] = Field(default_factory=list)
    created_at: datetime
    last_activity: datetime

    def is_known_address(self, address: str) -> bool:
        return address.lower() in self.known_addresses


class ProfileSummary(BaseModel):
    session_id: str
    status: str  # new / active
    email: str | None = None  # masked
    email_verified: bool = False
    created_at: datetime
    last_activity: datetime
    transaction_count: int = 0
    known_addresses: int = 0
    average_duration: float
    average_amount: float = 0.0
    amount_std_dev: float = 0.0
    recent_transactions: list[dict[str, Any]] = Field(default_factory=list)


# --- Interaction Timing Models ---


class InteractionHandle(BaseModel):
    session_id: str
    kind: str
    started_at: datetime


class TimingSnapshot(BaseModel):
    found: bool
    elapsed_seconds: float = 0.0
    interaction_count: int = 0
    seconds_since_last_interaction: float | None = None
    started_at: datetime | None = None


class InteractionEndResult(BaseModel):
    found: bool
    successful: bool
    duration_seconds: float = 0.0
    interaction_count: int = 0
    # Set once a completed transfer has been fed back into the baseline
    profile_updated: bool = False
    persisted: bool | None = None


# --- Anomaly Models ---


class AmountAnomaly(BaseModel):
    """Amount signal. ``None`` means not applicable, never "normal"."""

    ratio: float | None = None
    z_score: float | None = None
    sample_size: int = 0
    mean: float | None = None
    std_dev: float | None = None


class FrequencyFlags(BaseModel):
    recent_count: int = 0
    rapid_transactions: bool = False
    sweeping_pattern: bool = False
    recent_total: float = 0.0


# --- Risk Assessment Models ---


class FeatureScore(BaseModel):
    feature: str
    score: float = Field(ge=0.0, le=100.0)
    weight: float = 0.0
    flags: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def weighted(self) -> float:
        return self.score * self.weight / 100.0


class TimingDetails(BaseModel):
    session_found: bool
    duration_seconds: float = 0.0
    average_duration: float
    speed_ratio: float | None = None
    interaction_count: int = 0
    direct_invocation: bool = False
    requires_verification: bool = False


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    total_risk_score: float = Field(ge=0.0, le=100.0)
    risk_level: RiskLevel
    recommended_action: RecommendedAction
    requires_email_verification: bool = False
    feature_scores: list[FeatureScore] = Field(default_factory=list)
    flags: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    timing_details: TimingDetails
    config_version: str
    evaluated_at: datetime

    def feature(self, name: str) -> FeatureScore | None:
        for score in self.feature_scores:
            if score.feature == name:
                return score
        return None


# --- Verification Models ---


class IssuedChallenge(BaseModel):
    token_id: str
    session_id: str
    email: str
    code: str
    expires_at: datetime


class VerificationResult(BaseModel):
    token_id: str
    status: VerificationStatus
    attempts_remaining: int | None = None
    expires_at: datetime | None = None
    tx_snapshot: dict[str, Any] | None = None

    @property
    def success(self) -> bool:
        return self.status in (VerificationStatus.VERIFIED, VerificationStatus.ALREADY_VERIFIED)

    def raise_for_status(self) -> "VerificationResult":
        """Raise the matching SecurityError for a failed outcome."""
        if self.status == VerificationStatus.NOT_FOUND:
            raise NotFoundError("Verification token not found", token_id=self.token_id)
        if self.status == VerificationStatus.EXPIRED:
            raise ExpiredError("Verification token expired", token_id=self.token_id)
        if self.status == VerificationStatus.ATTEMPTS_EXHAUSTED:
            raise AttemptsExhaustedError(
                "Too many wrong codes, verification token revoked", token_id=self.token_id
            )
        if self.status == VerificationStatus.WRONG_CODE:
            raise WrongCodeError(
                "Wrong verification code",
                token_id=self.token_id,
                attempts_remaining=self.attempts_remaining,
                expires_at=self.expires_at.isoformat() if self.expires_at else None,
            )
        return self


class TokenStatus(BaseModel):
    token_id: str
    exists: bool
    verified: bool = False
    expired: bool = False
    attempts_remaining: int | None = None
    expires_at: datetime | None = None


# --- Gate Models ---


class TransactionRequest(BaseModel):
    recipient: str
    amount: float
    balance: float
    interaction_kind: str = "transfer"
    token: str = "ETH"
    wallet_fingerprint: str | None = None

    @field_validator("recipient")
    @classmethod
    def _check_recipient(cls, v: str) -> str:
        normalize_address(v)
        return v.strip()

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, v: float) -> float:
        return validate_amount(v)

    @field_validator("balance")
    @classmethod
    def _check_balance(cls, v: float) -> float:
        return validate_amount(v, "balance", allow_non_positive=True)


class CompletedTransfer(BaseModel):
    """Summary of a transfer that actually went out, fed back into the baseline."""

    recipient: str
    amount: float
    risk_score: float | None = None
    token: str = "ETH"

    @field_validator("recipient")
    @classmethod
    def _check_recipient(cls, v: str) -> str:
        normalize_address(v)
        return v.strip()

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, v: float) -> float:
        return validate_amount(v)


class ChallengeInfo(BaseModel):
    token_id: str
    email: str | None  # masked
    expires_at: datetime
    delivered: bool = True
    demo_mode: bool = False


class GateResult(BaseModel):
    decision: GateDecision
    session_id: str | None = None
    message: str = ""
    assessment: RiskAssessment | None = None
    challenge: ChallengeInfo | None = None
    transaction: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    @property
    def approved(self) -> bool:
        return self.decision == GateDecision.APPROVED


# --- API Request Models ---


class InteractionStartRequest(BaseModel):
    session_id: str = Field(min_length=1)
    kind: str = "transfer"


class InteractionEventRequest(BaseModel):
    session_id: str = Field(min_length=1)
    kind: str = "transfer"
    interaction_type: str = "generic"


class InteractionEndRequest(BaseModel):
    session_id: str = Field(min_length=1)
    kind: str = "transfer"
    successful: bool = True
    completed_transfer: CompletedTransfer | None = None


class EvaluateTransactionRequest(TransactionRequest):
    session_id: str = Field(min_length=1)


class RecordTransactionRequest(CompletedTransfer):
    session_id: str = Field(min_length=1)


class VerificationSubmitRequest(BaseModel):
    token_id: str
    code: str


class VerificationConfirmRequest(BaseModel):
    token_id: str


class EmailRegisterRequest(BaseModel):
    session_id: str = Field(min_length=1)
    email: str
    wallet_fingerprint: str | None = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        return validate_email(v)
