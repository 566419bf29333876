"""Transfer risk engine configuration with sensible defaults.

All thresholds, weights, and parameters for interaction timing, the
statistical anomaly detector, the address and time-of-day heuristics, the
aggregate risk table, and the email verification challenge.
"""

import os
from dataclasses import dataclass, field


@dataclass
class ProfileConfig:
    """Per-session behavioral baseline parameters."""

    # Seed for the average transfer duration until enough samples exist
    default_average_duration: float = 120.0
    # Completed transfers required before the average replaces the seed
    min_samples_for_average: int = 3
    # Durations kept for the running average
    duration_window: int = 20
    # Amounts kept for mean/stddev and the bounded history
    history_limit: int = 100


@dataclass
class TimingConfig:
    """Behavioral timing tiers, expressed as elapsed / average duration."""

    critical_speed_ratio: float = 0.10
    suspicious_speed_ratio: float = 0.25
    moderate_speed_ratio: float = 0.50

    critical_score: float = 100.0
    suspicious_score: float = 75.0
    moderate_score: float = 40.0
    normal_score: float = 5.0

    # No interaction window at evaluation time (DirectInvocationPenalty)
    direct_invocation_score: float = 70.0

    # Fewer interactions than this, over more than low_interaction_min_seconds
    low_interaction_count: int = 3
    low_interaction_min_seconds: float = 5.0
    low_interaction_penalty: float = 20.0


@dataclass
class AmountRatioConfig:
    """Amount / balance ratio tiers."""

    very_high_ratio: float = 0.8
    high_ratio: float = 0.5
    medium_ratio: float = 0.3

    very_high_score: float = 100.0
    high_score: float = 70.0
    medium_score: float = 40.0
    low_score: float = 10.0


@dataclass
class AddressConfig:
    """Counterparty novelty scores."""

    known_score: float = 5.0
    new_address_score: float = 60.0
    new_address_high_amount_score: float = 90.0
    # A first-time address receiving more than this multiple of the mean
    high_amount_multiplier: float = 2.0


@dataclass
class StatisticalConfig:
    """Amount/duration z-score and frequency parameters."""

    min_samples: int = 3
    # Recent amounts used for the amount z-score
    stats_window: int = 20
    zscore_threshold: float = 2.0
    severe_zscore_threshold: float = 4.0

    severe_score: float = 90.0
    anomaly_score: float = 60.0
    normal_score: float = 10.0
    # Zero-variance history: deviation beyond this fraction of the mean
    flat_deviation_fraction: float = 0.1
    flat_deviation_score: float = 50.0
    flat_normal_score: float = 5.0
    # Fewer than min_samples completed transfers
    low_information_score: float = 20.0

    # Candidate amount / mean amount tiers, applied whatever the history size
    extreme_amount_ratio: float = 10.0
    high_amount_ratio: float = 5.0
    elevated_amount_ratio: float = 2.0
    extreme_amount_penalty: float = 50.0
    high_amount_penalty: float = 35.0
    elevated_amount_penalty: float = 20.0

    duration_zscore_high: float = 2.0
    duration_zscore_critical: float = 3.0
    duration_high_penalty: float = 20.0
    duration_critical_penalty: float = 25.0

    rapid_window_seconds: int = 300
    rapid_min_count: int = 3
    rapid_penalty: float = 40.0

    sweeping_lookback: int = 5
    # Transactions inside the rapid window before sweeping is considered
    sweeping_min_in_window: int = 2
    sweeping_mean_multiplier: float = 20.0
    sweeping_penalty: float = 60.0


@dataclass
class TimeOfDayConfig:
    """Local-hour bands: [start, end) hours."""

    late_night_hours: tuple[int, int] = (2, 5)
    night_hours: tuple[int, int] = (0, 6)
    evening_hours: tuple[int, int] = (18, 24)

    late_night_score: float = 60.0
    night_score: float = 40.0
    evening_score: float = 10.0
    day_score: float = 5.0


@dataclass
class RiskWeights:
    """Per-feature weight percentages for the aggregate score."""

    amount_ratio: float = 25.0
    address_novelty: float = 20.0
    statistical_anomaly: float = 20.0
    time_of_day: float = 10.0
    behavior_timing: float = 25.0

    def __post_init__(self) -> None:
        total = (
            self.amount_ratio
            + self.address_novelty
            + self.statistical_anomaly
            + self.time_of_day
            + self.behavior_timing
        )
        if abs(total - 100.0) > 1e-6:
            raise ValueError(f"Risk weights must sum to 100, got {total:.4f}")


@dataclass
class RiskThresholds:
    """Upper bounds (inclusive) of each risk level. Above high_max is critical."""

    low_max: float = 30.0
    medium_max: float = 60.0
    high_max: float = 80.0


@dataclass
class VerificationConfig:
    """Email verification challenge parameters."""

    code_length: int = 6
    token_ttl_seconds: int = 300
    max_attempts: int = 3


@dataclass
class SecurityConfig:
    """Top-level transfer risk engine configuration."""

    version: str = "risk-engine-v1"
    profile: ProfileConfig = field(default_factory=ProfileConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    amount: AmountRatioConfig = field(default_factory=AmountRatioConfig)
    address: AddressConfig = field(default_factory=AddressConfig)
    statistical: StatisticalConfig = field(default_factory=StatisticalConfig)
    time_of_day: TimeOfDayConfig = field(default_factory=TimeOfDayConfig)
    weights: RiskWeights = field(default_factory=RiskWeights)
    thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    verification: VerificationConfig = field(default_factory=VerificationConfig)

    @classmethod
    def from_env(cls) -> "SecurityConfig":
        """Load config with env var overrides. Env vars use TXGUARD_ prefix."""
        config = cls()

        # Profile overrides
        if v := os.getenv("TXGUARD_DEFAULT_AVERAGE_DURATION"):
            config.profile.default_average_duration = float(v)

        # Timing overrides
        if v := os.getenv("TXGUARD_CRITICAL_SPEED_RATIO"):
            config.timing.critical_speed_ratio = float(v)
        if v := os.getenv("TXGUARD_SUSPICIOUS_SPEED_RATIO"):
            config.timing.suspicious_speed_ratio = float(v)
        if v := os.getenv("TXGUARD_DIRECT_INVOCATION_SCORE"):
            config.timing.direct_invocation_score = float(v)

        # Weight overrides are applied together so the sum is re-validated
        weight_overrides = {
            "amount_ratio": os.getenv("TXGUARD_WEIGHT_AMOUNT_RATIO"),
            "address_novelty": os.getenv("TXGUARD_WEIGHT_ADDRESS_NOVELTY"),
            "statistical_anomaly": os.getenv("TXGUARD_WEIGHT_STATISTICAL_ANOMALY"),
            "time_of_day": os.getenv("TXGUARD_WEIGHT_TIME_OF_DAY"),
            "behavior_timing": os.getenv("TXGUARD_WEIGHT_BEHAVIOR_TIMING"),
        }
        if any(weight_overrides.values()):
            current = config.weights
            config.weights = RiskWeights(
                **{
                    name: float(value) if value else getattr(current, name)
                    for name, value in weight_overrides.items()
                }
            )

        # Threshold overrides
        if v := os.getenv("TXGUARD_LOW_MAX"):
            config.thresholds.low_max = float(v)
        if v := os.getenv("TXGUARD_MEDIUM_MAX"):
            config.thresholds.medium_max = float(v)
        if v := os.getenv("TXGUARD_HIGH_MAX"):
            config.thresholds.high_max = float(v)

        # Verification overrides
        if v := os.getenv("TXGUARD_TOKEN_TTL_SECONDS"):
            config.verification.token_ttl_seconds = int(v)
        if v := os.getenv("TXGUARD_MAX_ATTEMPTS"):
            config.verification.max_attempts = int(v)

        return config


# Module-level default instance
default_config = SecurityConfig()
