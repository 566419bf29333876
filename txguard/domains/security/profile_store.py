"""Per-session behavioral baseline store.

Holds the working copy of every session's ``BehaviorProfile`` in memory and
feeds completed transfers back into it (running average duration, amount
mean/stddev, known counterparties). Durable writes are delegated to a
``ProfileRepository`` after the in-memory update and are best-effort: a
failed write is logged and reported, never rolled back into the baseline.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import numpy as np
import structlog
from pydantic import BaseModel

from .config import SecurityConfig, default_config
from .errors import DependencyError
from .models import (
    BehaviorProfile,
    CompletedTransfer,
    ProfileSummary,
    TransactionRecord,
    mask_email,
    normalize_address,
    truncate_address,
    validate_email,
)
from .repository import InMemoryProfileRepository, ProfileRepository, wallet_fingerprint

logger = structlog.get_logger()

# Floor for the learned average so timing ratios never divide by zero
MIN_AVERAGE_DURATION = 1.0


class ProfileUpdate(BaseModel):
    profile: BehaviorProfile
    record: TransactionRecord
    persisted: bool


class BehaviorProfileStore:
    """Owns session profiles; the only writer of baseline statistics."""

    def __init__(
        self,
        repository: ProfileRepository | None = None,
        config: SecurityConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or default_config
        self._repository = repository or InMemoryProfileRepository(
            history_limit=self._config.profile.history_limit
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._profiles: dict[str, BehaviorProfile] = {}
        self._lock = asyncio.Lock()

    @property
    def repository(self) -> ProfileRepository:
        return self._repository

    def _fresh(self, session_id: str) -> BehaviorProfile:
        now = self._clock()
        return BehaviorProfile(
            session_id=session_id,
            average_duration=self._config.profile.default_average_duration,
            created_at=now,
            last_activity=now,
        )

    async def _ensure(self, session_id: str) -> BehaviorProfile:
        """Return the live profile, loading or creating it on first reference.

        Repository I/O happens outside the lock; the first loader wins.
        """
        async with self._lock:
            profile = self._profiles.get(session_id)
        if profile is not None:
            return profile

        loaded = await self._repository.load_profile(session_id)
        if loaded is None:
            loaded = self._fresh(session_id)
            logger.info("behavior_profile_created", session_id=session_id)

        async with self._lock:
            return self._profiles.setdefault(session_id, loaded)

    async def get_profile(self, session_id: str) -> BehaviorProfile:
        """Read-only copy of the session's profile."""
        profile = await self._ensure(session_id)
        async with self._lock:
            return profile.model_copy(deep=True)

    async def record_completed_transfer(
        self,
        session_id: str,
        transfer: CompletedTransfer,
        duration_seconds: float | None = None,
        interaction_count: int | None = None,
        kind: str = "transfer",
    ) -> ProfileUpdate:
        """Feed a successfully sent transfer back into the baseline."""
        address_key = normalize_address(transfer.recipient)
        profile = await self._ensure(session_id)
        cfg = self._config.profile

        async with self._lock:
            now = self._clock()
            record = TransactionRecord(
                amount=transfer.amount,
                counterparty=transfer.recipient,
                duration_seconds=duration_seconds,
                interaction_count=interaction_count,
                risk_score=transfer.risk_score,
                kind=kind,
                token=transfer.token,
                timestamp=now,
            )
            profile.recent_transactions.insert(0, record)
            del profile.recent_transactions[cfg.history_limit :]
            profile.total_transactions += 1
            profile.known_addresses[address_key] = profile.known_addresses.get(address_key, 0) + 1

            amounts = np.array([r.amount for r in profile.recent_transactions], dtype=float)
            profile.amount_mean = float(np.mean(amounts))
            profile.amount_std_dev = float(np.std(amounts))

            if duration_seconds is not None:
                durations = [
                    r.duration_seconds
                    for r in profile.recent_transactions
                    if r.duration_seconds is not None
                ][: cfg.duration_window]
                if len(durations) >= cfg.min_samples_for_average:
                    sample = np.array(durations, dtype=float)
                    profile.average_duration = max(float(np.mean(sample)), MIN_AVERAGE_DURATION)
                    profile.duration_std_dev = float(np.std(sample))

            profile.last_activity = now
            snapshot = profile.model_copy(deep=True)

        logger.info(
            "behavior_profile_updated",
            session_id=session_id,
            total_transactions=snapshot.total_transactions,
            average_duration=round(snapshot.average_duration, 2),
            amount_mean=snapshot.amount_mean,
        )

        persisted = await self._persist_transfer(snapshot, record, address_key)
        return ProfileUpdate(profile=snapshot, record=record, persisted=persisted)

    async def _persist_transfer(
        self, snapshot: BehaviorProfile, record: TransactionRecord, address_key: str
    ) -> bool:
        try:
            await self._repository.save_profile(snapshot)
            await self._repository.append_transaction(snapshot.session_id, record)
            await self._repository.register_address(snapshot.session_id, address_key)
        except DependencyError as exc:
            # Learning is best-effort; the in-memory baseline stays updated
            logger.warning(
                "behavior_profile_persist_failed",
                session_id=snapshot.session_id,
                error=exc.message,
            )
            return False
        return True

    async def register_email(
        self,
        session_id: str,
        email: str,
        fingerprint: str | None = None,
    ) -> BehaviorProfile:
        """Attach a verification email to the session (and wallet, if given).

        The wallet fingerprint is hashed again before it reaches the
        repository, so whatever the client sends is never stored as is.

        Persistence runs first so a storage failure leaves memory untouched.
        Raises DependencyError when the store is unavailable.
        """
        email = validate_email(email)
        profile = await self._ensure(session_id)

        async with self._lock:
            updated = profile.model_copy(deep=True)
        updated.email = email
        updated.email_verified = True
        updated.last_activity = self._clock()

        await self._repository.save_profile(updated)
        if fingerprint:
            await self._repository.register_wallet_email(wallet_fingerprint(fingerprint), email)

        async with self._lock:
            profile.email = updated.email
            profile.email_verified = True
            profile.last_activity = updated.last_activity
            result = profile.model_copy(deep=True)

        logger.info(
            "verification_email_registered",
            session_id=session_id,
            email=mask_email(email),
            wallet_linked=fingerprint is not None,
        )
        return result

    async def restore_email(self, session_id: str, fingerprint: str) -> str | None:
        """Recover a wallet's email for a regenerated session."""
        email = await self._repository.get_wallet_email(wallet_fingerprint(fingerprint))
        if not email:
            return None

        profile = await self._ensure(session_id)
        async with self._lock:
            profile.email = email
            profile.email_verified = True
            snapshot = profile.model_copy(deep=True)

        try:
            await self._repository.save_profile(snapshot)
        except DependencyError as exc:
            logger.warning("restored_email_persist_failed", session_id=session_id, error=exc.message)

        logger.info("verification_email_restored", session_id=session_id, email=mask_email(email))
        return email

    async def evict(self, session_id: str) -> bool:
        """Drop the working copy; the next reference reloads it from the repository."""
        async with self._lock:
            evicted = self._profiles.pop(session_id, None) is not None
        if evicted:
            logger.info("behavior_profile_evicted", session_id=session_id)
        return evicted

    def __len__(self) -> int:
        return len(self._profiles)

    async def summary(self, session_id: str) -> ProfileSummary:
        profile = await self.get_profile(session_id)
        return ProfileSummary(
            session_id=profile.session_id,
            status="active" if profile.total_transactions > 0 else "new",
            email=mask_email(profile.email),
            email_verified=profile.email_verified,
            created_at=profile.created_at,
            last_activity=profile.last_activity,
            transaction_count=profile.total_transactions,
            known_addresses=len(profile.known_addresses),
            average_duration=profile.average_duration,
            average_amount=profile.amount_mean,
            amount_std_dev=profile.amount_std_dev,
            recent_transactions=[
                {
                    "amount": r.amount,
                    "to": truncate_address(r.counterparty),
                    "kind": r.kind,
                    "token": r.token,
                    "duration_seconds": r.duration_seconds,
                    "risk_score": r.risk_score,
                    "timestamp": r.timestamp.isoformat(),
                }
                for r in profile.recent_transactions[:10]
            ],
        )
