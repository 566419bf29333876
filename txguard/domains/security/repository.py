"""Durable storage for behavior profiles, transaction history, and wallet emails.

The risk engine keeps its working state in memory; repositories are the
persistence collaborator behind it. Backend failures surface as
``DependencyError`` so callers can retry without corrupting engine state.
"""

import hashlib
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from txguard.db.models import BehaviorProfileDB, KnownAddressDB, TransactionHistoryDB, WalletEmailDB

from .errors import DependencyError
from .models import BehaviorProfile, TransactionRecord

logger = structlog.get_logger()


def wallet_fingerprint(secret: str) -> str:
    """Stable key for email recovery across session regeneration.

    The profile store applies it to every fingerprint it receives, so
    repositories only ever see the hash.
    """
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


class ProfileRepository(ABC):
    @abstractmethod
    async def load_profile(self, session_id: str) -> BehaviorProfile | None: ...

    @abstractmethod
    async def save_profile(self, profile: BehaviorProfile) -> None: ...

    @abstractmethod
    async def append_transaction(self, session_id: str, record: TransactionRecord) -> None: ...

    @abstractmethod
    async def register_address(self, session_id: str, address: str) -> None: ...

    @abstractmethod
    async def get_wallet_email(self, fingerprint: str) -> str | None: ...

    @abstractmethod
    async def register_wallet_email(self, fingerprint: str, email: str) -> None: ...

    async def close(self) -> None:
        return None


class InMemoryProfileRepository(ProfileRepository):
    """Process-local repository. Profiles live as long as the process."""

    def __init__(self, history_limit: int = 100) -> None:
        self._history_limit = history_limit
        self._profiles: dict[str, BehaviorProfile] = {}
        self._transactions: dict[str, list[TransactionRecord]] = {}
        self._addresses: dict[str, dict[str, int]] = {}
        self._wallet_emails: dict[str, str] = {}

    async def load_profile(self, session_id: str) -> BehaviorProfile | None:
        stored = self._profiles.get(session_id)
        if stored is None:
            return None
        profile = stored.model_copy(deep=True)
        profile.recent_transactions = [
            r.model_copy() for r in self._transactions.get(session_id, [])
        ]
        profile.known_addresses = dict(self._addresses.get(session_id, {}))
        return profile

    async def save_profile(self, profile: BehaviorProfile) -> None:
        self._profiles[profile.session_id] = profile.model_copy(deep=True)

    async def append_transaction(self, session_id: str, record: TransactionRecord) -> None:
        history = self._transactions.setdefault(session_id, [])
        history.insert(0, record.model_copy())
        del history[self._history_limit :]

    async def register_address(self, session_id: str, address: str) -> None:
        addresses = self._addresses.setdefault(session_id, {})
        key = address.lower()
        addresses[key] = addresses.get(key, 0) + 1

    async def get_wallet_email(self, fingerprint: str) -> str | None:
        return self._wallet_emails.get(fingerprint)

    async def register_wallet_email(self, fingerprint: str, email: str) -> None:
        self._wallet_emails[fingerprint] = email


class SqlProfileRepository(ProfileRepository):
    """PostgreSQL-backed repository (SQLAlchemy async + asyncpg)."""

    def __init__(
        self,
        session_factory: Callable[[], Any] | None = None,
        history_limit: int = 100,
    ) -> None:
        self._owns_engine = session_factory is None
        if session_factory is None:
            from txguard.db.database import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory
        self._history_limit = history_limit

    async def close(self) -> None:
        if self._owns_engine:
            from txguard.db.database import dispose_db

            await dispose_db()

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("profile_store_failed", operation=operation, error=str(exc))
            raise DependencyError(
                f"Profile store unavailable during {operation}", operation=operation
            ) from exc

    async def load_profile(self, session_id: str) -> BehaviorProfile | None:
        async with self._session("load_profile") as session:
            result = await session.execute(
                select(BehaviorProfileDB).where(BehaviorProfileDB.session_id == session_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            tx_result = await session.execute(
                select(TransactionHistoryDB)
                .where(TransactionHistoryDB.session_id == session_id)
                .order_by(TransactionHistoryDB.timestamp.desc())
                .limit(self._history_limit)
            )
            transactions = tx_result.scalars().all()

            addr_result = await session.execute(
                select(KnownAddressDB).where(KnownAddressDB.session_id == session_id)
            )
            addresses = addr_result.scalars().all()

        return BehaviorProfile(
            session_id=row.session_id,
            email=row.email,
            email_verified=bool(row.email_verified),
            average_duration=row.average_duration,
            duration_std_dev=row.duration_std_dev or 0.0,
            total_transactions=row.total_transactions or 0,
            amount_mean=row.amount_mean or 0.0,
            amount_std_dev=row.amount_std_dev or 0.0,
            known_addresses={a.address: a.interaction_count for a in addresses},
            recent_transactions=[
                TransactionRecord(
                    amount=t.amount,
                    counterparty=t.to_address,
                    duration_seconds=t.duration_seconds,
                    interaction_count=t.interaction_count,
                    risk_score=t.risk_score,
                    kind=t.tx_type,
                    token=t.token,
                    timestamp=t.timestamp,
                )
                for t in transactions
            ],
            created_at=row.created_at,
            last_activity=row.last_activity,
        )

    async def save_profile(self, profile: BehaviorProfile) -> None:
        values = {
            "email": profile.email,
            "email_verified": profile.email_verified,
            "average_duration": profile.average_duration,
            "duration_std_dev": profile.duration_std_dev,
            "total_transactions": profile.total_transactions,
            "amount_mean": profile.amount_mean,
            "amount_std_dev": profile.amount_std_dev,
            "last_activity": profile.last_activity,
        }
        stmt = insert(BehaviorProfileDB).values(
            session_id=profile.session_id, created_at=profile.created_at, **values
        )
        stmt = stmt.on_conflict_do_update(index_elements=["session_id"], set_=values)
        async with self._session("save_profile") as session:
            await session.execute(stmt)
            await session.commit()

    async def append_transaction(self, session_id: str, record: TransactionRecord) -> None:
        async with self._session("append_transaction") as session:
            session.add(
                TransactionHistoryDB(
                    session_id=session_id,
                    tx_type=record.kind,
                    amount=record.amount,
                    to_address=record.counterparty,
                    token=record.token,
                    duration_seconds=record.duration_seconds,
                    interaction_count=record.interaction_count,
                    risk_score=record.risk_score,
                    timestamp=record.timestamp,
                )
            )
            await session.commit()

    async def register_address(self, session_id: str, address: str) -> None:
        stmt = insert(KnownAddressDB).values(
            session_id=session_id, address=address.lower(), interaction_count=1
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_known_address",
            set_={"interaction_count": KnownAddressDB.interaction_count + 1},
        )
        async with self._session("register_address") as session:
            await session.execute(stmt)
            await session.commit()

    async def get_wallet_email(self, fingerprint: str) -> str | None:
        async with self._session("get_wallet_email") as session:
            result = await session.execute(
                select(WalletEmailDB.email).where(WalletEmailDB.wallet_hash == fingerprint)
            )
            return result.scalar_one_or_none()

    async def register_wallet_email(self, fingerprint: str, email: str) -> None:
        stmt = insert(WalletEmailDB).values(wallet_hash=fingerprint, email=email)
        stmt = stmt.on_conflict_do_update(index_elements=["wallet_hash"], set_={"email": email})
        async with self._session("register_wallet_email") as session:
            await session.execute(stmt)
            await session.commit()
