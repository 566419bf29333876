"""Statistical anomaly detection over a session's transfer history.

Every division is guarded: a zero or undefined denominator yields ``None``
("not applicable") rather than NaN/inf, and callers must not read ``None``
as "normal".
"""

import math
from datetime import datetime, timedelta

import numpy as np
import structlog

from .config import SecurityConfig, default_config
from .models import AmountAnomaly, BehaviorProfile, FeatureScore, FrequencyFlags

logger = structlog.get_logger()


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


class StatisticalAnomalyDetector:
    def __init__(self, config: SecurityConfig | None = None) -> None:
        self._config = config or default_config

    def duration_zscore(self, observed_seconds: float, profile: BehaviorProfile) -> float | None:
        """|observed - average| / duration stddev, or None without enough history."""
        cfg = self._config.statistical
        if profile.total_transactions < cfg.min_samples or profile.duration_std_dev <= 0:
            return None
        z = abs(observed_seconds - profile.average_duration) / profile.duration_std_dev
        return _finite_or_none(z)

    def amount_anomaly(self, observed_amount: float, profile: BehaviorProfile) -> AmountAnomaly:
        cfg = self._config.statistical
        result = AmountAnomaly()

        if profile.amount_mean > 0:
            result.ratio = _finite_or_none(observed_amount / profile.amount_mean)

        window = [r.amount for r in profile.recent_transactions[: cfg.stats_window]]
        result.sample_size = len(window)
        if profile.total_transactions < cfg.min_samples or len(window) < cfg.min_samples:
            return result

        sample = np.array(window, dtype=float)
        mean = float(np.mean(sample))
        std = float(np.std(sample))
        result.mean = mean
        result.std_dev = std
        if std > 0:
            result.z_score = _finite_or_none(abs(observed_amount - mean) / std)
        return result

    def frequency_flags(
        self, observed_amount: float, profile: BehaviorProfile, now: datetime
    ) -> FrequencyFlags:
        """Rapid-transfer and fund-draining ("sweeping") checks."""
        cfg = self._config.statistical
        cutoff = now - timedelta(seconds=cfg.rapid_window_seconds)
        recent_count = sum(1 for r in profile.recent_transactions if r.timestamp > cutoff)

        lookback = profile.recent_transactions[: cfg.sweeping_lookback]
        recent_total = sum(r.amount for r in lookback) + observed_amount

        sweeping = (
            recent_count >= cfg.sweeping_min_in_window
            and profile.amount_mean > 0
            and recent_total > profile.amount_mean * cfg.sweeping_mean_multiplier
        )
        return FrequencyFlags(
            recent_count=recent_count,
            rapid_transactions=recent_count >= cfg.rapid_min_count,
            sweeping_pattern=sweeping,
            recent_total=recent_total,
        )

    def score(
        self,
        observed_amount: float,
        profile: BehaviorProfile,
        now: datetime,
        observed_seconds: float | None = None,
    ) -> FeatureScore:
        """Statistical sub-score (0-100): amount z-score tier, ratio-to-mean tier, layered flags."""
        cfg = self._config.statistical
        flags: list[str] = []
        reasons: list[str] = []

        anomaly = self.amount_anomaly(observed_amount, profile)
        if anomaly.mean is None:
            # Low-information, not low-risk
            score = cfg.low_information_score
            flags.append("insufficient_history")
            reasons.append(
                f"Not enough transfer history yet ({anomaly.sample_size}/{cfg.min_samples})"
            )
        elif anomaly.z_score is not None:
            z = anomaly.z_score
            if z > cfg.severe_zscore_threshold:
                score = cfg.severe_score
                flags.append("severe_amount_anomaly")
                reasons.append(f"Amount is {z:.1f} standard deviations from the recent mean")
            elif z > cfg.zscore_threshold:
                score = cfg.anomaly_score
                flags.append("amount_anomaly")
                reasons.append(f"Amount is {z:.1f} standard deviations from the recent mean")
            else:
                score = cfg.normal_score
        elif abs(observed_amount - anomaly.mean) > anomaly.mean * cfg.flat_deviation_fraction:
            # Zero-variance history: any real deviation stands out
            score = cfg.flat_deviation_score
            flags.append("unusual_amount")
            reasons.append("Amount differs from an otherwise constant history")
        else:
            score = cfg.flat_normal_score

        ratio = anomaly.ratio
        if ratio is not None and ratio >= cfg.extreme_amount_ratio:
            score += cfg.extreme_amount_penalty
            flags.append("extreme_amount")
            reasons.append(f"Amount is {ratio:.1f}x the usual transfer")
        elif ratio is not None and ratio >= cfg.high_amount_ratio:
            score += cfg.high_amount_penalty
            flags.append("high_amount")
            reasons.append(f"Amount is {ratio:.1f}x the usual transfer")
        elif ratio is not None and ratio >= cfg.elevated_amount_ratio:
            score += cfg.elevated_amount_penalty
            reasons.append(f"Amount is above the usual transfer ({ratio:.1f}x)")

        duration_z = None
        if observed_seconds is not None and observed_seconds > 0:
            duration_z = self.duration_zscore(observed_seconds, profile)
            if duration_z is not None and duration_z > cfg.duration_zscore_critical:
                score += cfg.duration_critical_penalty
                flags.append("duration_statistical_anomaly")
                reasons.append(f"Completion time is a statistical outlier (z={duration_z:.1f})")
            elif duration_z is not None and duration_z > cfg.duration_zscore_high:
                score += cfg.duration_high_penalty
                flags.append("duration_behavioral_anomaly")
                reasons.append(f"Completion time deviates from the usual pace (z={duration_z:.1f})")

        frequency = self.frequency_flags(observed_amount, profile, now)
        if frequency.rapid_transactions:
            score += cfg.rapid_penalty
            flags.append("rapid_transactions")
            reasons.append(
                f"{frequency.recent_count} transfers in the last "
                f"{cfg.rapid_window_seconds // 60} minutes"
            )
        if frequency.sweeping_pattern:
            score += cfg.sweeping_penalty
            flags.append("sweeping_pattern")
            reasons.append("Recent transfers look like the account is being drained")

        return FeatureScore(
            feature="statistical_anomaly",
            score=min(100.0, max(0.0, score)),
            weight=self._config.weights.statistical_anomaly,
            flags=flags,
            reasons=reasons,
            details={
                "amount_ratio_to_mean": anomaly.ratio,
                "amount_zscore": anomaly.z_score,
                "duration_zscore": duration_z,
                "sample_size": anomaly.sample_size,
                "mean": anomaly.mean,
                "std_dev": anomaly.std_dev,
                "recent_count": frequency.recent_count,
                "recent_total": frequency.recent_total,
            },
        )
