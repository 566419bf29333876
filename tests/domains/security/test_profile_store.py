"""Tests for the behavioral baseline store."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from txguard.domains.security.errors import DependencyError, ValidationError
from txguard.domains.security.models import CompletedTransfer
from txguard.domains.security.profile_store import BehaviorProfileStore
from txguard.domains.security.repository import InMemoryProfileRepository, wallet_fingerprint

RECIPIENT = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


@pytest.fixture
def repository() -> InMemoryProfileRepository:
    return InMemoryProfileRepository()


@pytest.fixture
def store(repository, config, clock) -> BehaviorProfileStore:
    return BehaviorProfileStore(repository=repository, config=config, clock=clock)


def _transfer(amount: float = 1.0, recipient: str = RECIPIENT) -> CompletedTransfer:
    return CompletedTransfer(recipient=recipient, amount=amount)


class TestProfileCreation:
    async def test_fresh_profile_defaults(self, store, config):
        profile = await store.get_profile("sess-new")
        assert profile.average_duration == config.profile.default_average_duration
        assert profile.total_transactions == 0
        assert profile.known_addresses == {}
        assert profile.email is None

    async def test_returned_profile_is_a_copy(self, store):
        profile = await store.get_profile("sess-1")
        profile.known_addresses["tampered"] = 1
        assert (await store.get_profile("sess-1")).known_addresses == {}

    async def test_loads_from_repository(self, repository, config, clock):
        first = BehaviorProfileStore(repository=repository, config=config, clock=clock)
        await first.record_completed_transfer("sess-1", _transfer(2.0), duration_seconds=30.0)

        second = BehaviorProfileStore(repository=repository, config=config, clock=clock)
        profile = await second.get_profile("sess-1")
        assert profile.total_transactions == 1
        assert profile.amount_mean == pytest.approx(2.0)
        assert profile.known_addresses == {RECIPIENT.lower(): 1}
        assert len(profile.recent_transactions) == 1


class TestRecordCompletedTransfer:
    async def test_average_keeps_seed_until_three_samples(self, store, config):
        await store.record_completed_transfer("sess-1", _transfer(), duration_seconds=30.0)
        await store.record_completed_transfer("sess-1", _transfer(), duration_seconds=30.0)
        profile = await store.get_profile("sess-1")
        assert profile.average_duration == config.profile.default_average_duration

    async def test_average_converges_to_constant_duration(self, store):
        for _ in range(5):
            await store.record_completed_transfer("sess-1", _transfer(), duration_seconds=42.0)
        profile = await store.get_profile("sess-1")
        assert profile.average_duration == pytest.approx(42.0)
        assert profile.duration_std_dev == pytest.approx(0.0)

    async def test_average_uses_last_twenty_durations(self, store):
        for _ in range(20):
            await store.record_completed_transfer("sess-1", _transfer(), duration_seconds=100.0)
        for _ in range(20):
            await store.record_completed_transfer("sess-1", _transfer(), duration_seconds=10.0)
        profile = await store.get_profile("sess-1")
        assert profile.average_duration == pytest.approx(10.0)

    async def test_average_has_a_floor(self, store):
        for _ in range(3):
            await store.record_completed_transfer("sess-1", _transfer(), duration_seconds=0.0)
        profile = await store.get_profile("sess-1")
        assert profile.average_duration > 0

    async def test_transfer_without_duration_leaves_average(self, store, config):
        for _ in range(4):
            await store.record_completed_transfer("sess-1", _transfer())
        profile = await store.get_profile("sess-1")
        assert profile.average_duration == config.profile.default_average_duration
        assert profile.total_transactions == 4

    async def test_amount_statistics(self, store):
        for amount in (1.0, 2.0, 3.0):
            await store.record_completed_transfer("sess-1", _transfer(amount))
        profile = await store.get_profile("sess-1")
        assert profile.amount_mean == pytest.approx(2.0)
        assert profile.amount_std_dev == pytest.approx((2 / 3) ** 0.5)

    async def test_history_is_bounded_and_most_recent_first(self, store, config):
        limit = config.profile.history_limit
        for i in range(limit + 5):
            await store.record_completed_transfer("sess-1", _transfer(float(i + 1)))
        profile = await store.get_profile("sess-1")
        assert len(profile.recent_transactions) == limit
        assert profile.recent_transactions[0].amount == float(limit + 5)
        assert profile.total_transactions == limit + 5

    async def test_addresses_are_counted_case_insensitively(self, store):
        await store.record_completed_transfer("sess-1", _transfer(recipient=RECIPIENT))
        await store.record_completed_transfer("sess-1", _transfer(recipient=RECIPIENT.upper().replace("0X", "0x")))
        profile = await store.get_profile("sess-1")
        assert profile.known_addresses == {RECIPIENT.lower(): 2}
        assert profile.is_known_address(RECIPIENT)

    async def test_concurrent_updates_are_not_lost(self, store):
        await asyncio.gather(*(store.record_completed_transfer("sess-1", _transfer()) for _ in range(25)))
        profile = await store.get_profile("sess-1")
        assert profile.total_transactions == 25

    async def test_persist_failure_keeps_memory_update(self, store, repository):
        repository.save_profile = AsyncMock(side_effect=DependencyError("db down"))
        update = await store.record_completed_transfer("sess-1", _transfer(5.0))
        assert update.persisted is False
        profile = await store.get_profile("sess-1")
        assert profile.total_transactions == 1
        assert profile.amount_mean == pytest.approx(5.0)

    async def test_malformed_address_rejected_before_mutation(self, store):
        with pytest.raises(ValidationError):
            await store.record_completed_transfer(
                "sess-1", CompletedTransfer.model_construct(recipient="bad!", amount=1.0)
            )
        assert (await store.get_profile("sess-1")).total_transactions == 0


class TestEmail:
    async def test_register_email(self, store):
        profile = await store.register_email("sess-1", "owner@example.com")
        assert profile.email == "owner@example.com"
        assert profile.email_verified is True

    async def test_register_invalid_email(self, store):
        with pytest.raises(ValidationError):
            await store.register_email("sess-1", "not-an-email")

    async def test_register_failure_leaves_memory_untouched(self, store, repository):
        repository.save_profile = AsyncMock(side_effect=DependencyError("db down"))
        with pytest.raises(DependencyError):
            await store.register_email("sess-1", "owner@example.com")
        assert (await store.get_profile("sess-1")).email is None

    async def test_restore_email_by_wallet_fingerprint(self, store):
        fingerprint = wallet_fingerprint("seed words for the wallet")
        await store.register_email("sess-old", "owner@example.com", fingerprint=fingerprint)

        assert await store.restore_email("sess-new", fingerprint) == "owner@example.com"
        assert (await store.get_profile("sess-new")).email == "owner@example.com"
        assert await store.restore_email("sess-other", wallet_fingerprint("other")) is None

    async def test_repository_never_sees_the_raw_fingerprint(self, store, repository):
        await store.register_email("sess-1", "owner@example.com", fingerprint="raw-wallet-material")

        assert await repository.get_wallet_email("raw-wallet-material") is None
        stored = await repository.get_wallet_email(wallet_fingerprint("raw-wallet-material"))
        assert stored == "owner@example.com"


class TestEviction:
    async def test_evict_drops_working_copy(self, store):
        await store.get_profile("sess-1")
        assert len(store) == 1

        assert await store.evict("sess-1") is True
        assert len(store) == 0
        assert await store.evict("sess-1") is False

    async def test_evicted_profile_reloads_from_repository(self, store):
        await store.record_completed_transfer("sess-1", _transfer(3.0))
        await store.evict("sess-1")

        profile = await store.get_profile("sess-1")
        assert profile.total_transactions == 1
        assert profile.amount_mean == pytest.approx(3.0)
        assert profile.is_known_address(RECIPIENT)


class TestSummary:
    async def test_summary_masks_and_truncates(self, store):
        await store.register_email("sess-1", "owner@example.com")
        await store.record_completed_transfer("sess-1", _transfer(1.0))

        summary = await store.summary("sess-1")
        assert summary.status == "active"
        assert summary.email == "own***@example.com"
        assert summary.recent_transactions[0]["to"] == f"{RECIPIENT[:8]}...{RECIPIENT[-6:]}"

    async def test_new_session_summary(self, store):
        summary = await store.summary("sess-new")
        assert summary.status == "new"
        assert summary.transaction_count == 0
