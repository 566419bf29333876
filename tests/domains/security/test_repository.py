"""Tests for profile repositories."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from txguard.domains.security.errors import DependencyError
from txguard.domains.security.models import BehaviorProfile, TransactionRecord
from txguard.domains.security.repository import (
    InMemoryProfileRepository,
    SqlProfileRepository,
    wallet_fingerprint,
)

NOW = datetime(2026, 1, 15, 14, 0, tzinfo=UTC)
RECIPIENT = "0x" + "ab" * 20


def _profile(session_id: str = "sess-1") -> BehaviorProfile:
    return BehaviorProfile(session_id=session_id, created_at=NOW, last_activity=NOW)


def _record(amount: float) -> TransactionRecord:
    return TransactionRecord(amount=amount, counterparty=RECIPIENT, timestamp=NOW)


def _mock_session():
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    return session


def _factory(session):
    @asynccontextmanager
    async def factory():
        yield session

    return factory


class TestWalletFingerprint:
    def test_is_sha256_hex(self):
        fingerprint = wallet_fingerprint("correct horse battery staple")
        assert len(fingerprint) == 64
        assert fingerprint == wallet_fingerprint("correct horse battery staple")
        assert "horse" not in fingerprint

    def test_differs_per_secret(self):
        assert wallet_fingerprint("a") != wallet_fingerprint("b")


class TestInMemoryProfileRepository:
    async def test_missing_profile(self):
        assert await InMemoryProfileRepository().load_profile("nope") is None

    async def test_round_trip_with_history_and_addresses(self):
        repo = InMemoryProfileRepository(history_limit=3)
        await repo.save_profile(_profile())
        for amount in (1.0, 2.0, 3.0, 4.0):
            await repo.append_transaction("sess-1", _record(amount))
        await repo.register_address("sess-1", RECIPIENT.upper())
        await repo.register_address("sess-1", RECIPIENT)

        loaded = await repo.load_profile("sess-1")
        assert [r.amount for r in loaded.recent_transactions] == [4.0, 3.0, 2.0]
        assert loaded.known_addresses == {RECIPIENT.lower(): 2}

    async def test_wallet_email(self):
        repo = InMemoryProfileRepository()
        await repo.register_wallet_email("hash-1", "owner@example.com")
        assert await repo.get_wallet_email("hash-1") == "owner@example.com"
        assert await repo.get_wallet_email("hash-2") is None


class TestSqlProfileRepository:
    async def test_load_missing_profile(self):
        session = _mock_session()
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute = AsyncMock(return_value=result)

        repo = SqlProfileRepository(session_factory=_factory(session))
        assert await repo.load_profile("sess-1") is None

    async def test_load_profile_with_history(self):
        row = SimpleNamespace(
            session_id="sess-1",
            email="owner@example.com",
            email_verified=True,
            average_duration=45.0,
            duration_std_dev=3.0,
            total_transactions=2,
            amount_mean=1.5,
            amount_std_dev=0.5,
            created_at=NOW,
            last_activity=NOW,
        )
        tx = SimpleNamespace(
            amount=2.0,
            to_address=RECIPIENT,
            duration_seconds=44.0,
            interaction_count=7,
            risk_score=12.0,
            tx_type="transfer",
            token="ETH",
            timestamp=NOW,
        )
        address = SimpleNamespace(address=RECIPIENT, interaction_count=2)

        profile_result = MagicMock()
        profile_result.scalar_one_or_none.return_value = row
        tx_result = MagicMock()
        tx_result.scalars.return_value = MagicMock(all=MagicMock(return_value=[tx]))
        addr_result = MagicMock()
        addr_result.scalars.return_value = MagicMock(all=MagicMock(return_value=[address]))

        session = _mock_session()
        session.execute = AsyncMock(side_effect=[profile_result, tx_result, addr_result])

        loaded = await SqlProfileRepository(session_factory=_factory(session)).load_profile("sess-1")
        assert loaded.average_duration == 45.0
        assert loaded.email == "owner@example.com"
        assert loaded.known_addresses == {RECIPIENT: 2}
        assert loaded.recent_transactions[0].interaction_count == 7

    async def test_save_profile_commits(self):
        session = _mock_session()
        repo = SqlProfileRepository(session_factory=_factory(session))
        await repo.save_profile(_profile())
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    async def test_append_transaction_adds_row(self):
        session = _mock_session()
        repo = SqlProfileRepository(session_factory=_factory(session))
        await repo.append_transaction("sess-1", _record(3.0))
        added = session.add.call_args[0][0]
        assert added.amount == 3.0
        assert added.to_address == RECIPIENT
        session.commit.assert_awaited_once()

    async def test_backend_errors_become_dependency_errors(self):
        session = _mock_session()
        session.execute = AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("connection refused"))
        )
        repo = SqlProfileRepository(session_factory=_factory(session))

        with pytest.raises(DependencyError) as exc_info:
            await repo.get_wallet_email("hash-1")
        assert exc_info.value.retryable is True
        assert exc_info.value.details["operation"] == "get_wallet_email"
