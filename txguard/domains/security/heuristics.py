"""Stateless per-transfer heuristics: amount/balance ratio, counterparty novelty,
and local time of day. Each returns a 0-100 ``FeatureScore``; none of them
mutate the profile.
"""

from datetime import datetime

from .config import SecurityConfig
from .models import BehaviorProfile, FeatureScore, normalize_address


def score_amount_ratio(amount: float, balance: float, config: SecurityConfig) -> FeatureScore:
    cfg = config.amount
    weight = config.weights.amount_ratio

    if balance <= 0:
        return FeatureScore(
            feature="amount_ratio",
            score=100.0,
            weight=weight,
            flags=["insufficient_balance"],
            reasons=["Balance is empty or negative"],
            details={"amount": amount, "balance": balance, "ratio": None},
        )

    ratio = amount / balance
    flags: list[str] = []
    reasons: list[str] = []
    if ratio >= cfg.very_high_ratio:
        score = cfg.very_high_score
        flags.append("very_high_amount_ratio")
        reasons.append(f"Transfer is {ratio:.1%} of the balance")
    elif ratio >= cfg.high_ratio:
        score = cfg.high_score
        flags.append("high_amount_ratio")
        reasons.append(f"Transfer is {ratio:.1%} of the balance")
    elif ratio >= cfg.medium_ratio:
        score = cfg.medium_score
        flags.append("medium_amount_ratio")
        reasons.append(f"Transfer is {ratio:.1%} of the balance")
    else:
        score = cfg.low_score

    return FeatureScore(
        feature="amount_ratio",
        score=score,
        weight=weight,
        flags=flags,
        reasons=reasons,
        details={"amount": amount, "balance": balance, "ratio": ratio},
    )


def score_address_novelty(
    recipient: str, amount: float, profile: BehaviorProfile, config: SecurityConfig
) -> FeatureScore:
    cfg = config.address
    key = normalize_address(recipient)
    interactions = profile.known_addresses.get(key, 0)
    details = {
        "first_interaction": interactions == 0,
        "previous_interactions": interactions,
        "known_addresses": len(profile.known_addresses),
    }

    if interactions > 0:
        return FeatureScore(
            feature="address_novelty",
            score=cfg.known_score,
            weight=config.weights.address_novelty,
            reasons=[f"Recipient used {interactions} time(s) before"],
            details=details,
        )

    if profile.amount_mean > 0 and amount > profile.amount_mean * cfg.high_amount_multiplier:
        return FeatureScore(
            feature="address_novelty",
            score=cfg.new_address_high_amount_score,
            weight=config.weights.address_novelty,
            flags=["new_address", "new_address_high_amount"],
            reasons=["Large transfer to a first-time recipient"],
            details=details,
        )

    return FeatureScore(
        feature="address_novelty",
        score=cfg.new_address_score,
        weight=config.weights.address_novelty,
        flags=["new_address"],
        reasons=["First transfer to this recipient"],
        details=details,
    )


def _in_band(hour: int, band: tuple[int, int]) -> bool:
    start, end = band
    return start <= hour < end


def score_time_of_day(local_now: datetime, config: SecurityConfig) -> FeatureScore:
    cfg = config.time_of_day
    hour = local_now.hour

    if _in_band(hour, cfg.late_night_hours):
        score, period, flags = cfg.late_night_score, "late_night", ["late_night_transaction"]
        reasons = [f"Late-night transfer ({hour:02d}:00)"]
    elif _in_band(hour, cfg.night_hours):
        score, period, flags = cfg.night_score, "night", ["night_transaction"]
        reasons = [f"Night-time transfer ({hour:02d}:00)"]
    elif _in_band(hour, cfg.evening_hours):
        score, period, flags, reasons = cfg.evening_score, "evening", [], []
    else:
        score, period, flags, reasons = cfg.day_score, "day", [], []

    return FeatureScore(
        feature="time_of_day",
        score=score,
        weight=config.weights.time_of_day,
        flags=flags,
        reasons=reasons,
        details={"hour": hour, "period": period},
    )
