"""Tests for the engine facade: interaction feedback loop and lifecycle."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from txguard.domains.security.errors import DependencyError, NotFoundError
from txguard.domains.security.models import CompletedTransfer, TransactionRequest
from txguard.domains.security.service import SecurityEngine

RECIPIENT = "0x" + "ab" * 20


def _completed(amount: float = 1.0) -> CompletedTransfer:
    return CompletedTransfer(recipient=RECIPIENT, amount=amount, risk_score=12.0)


class TestInteractionFeedback:
    async def test_successful_end_feeds_the_baseline(self, engine, clock):
        for _ in range(3):
            await engine.start_interaction("sess-1")
            await engine.record_interaction_event("sess-1", "transfer", "keypress")
            clock.advance(60)
            result = await engine.end_interaction("sess-1", successful=True, completed_transfer=_completed())
            assert result.profile_updated is True
            assert result.persisted is True

        profile = await engine.profiles.get_profile("sess-1")
        assert profile.total_transactions == 3
        assert profile.average_duration == pytest.approx(60.0)
        assert profile.recent_transactions[0].interaction_count == 1
        assert profile.is_known_address(RECIPIENT)

    async def test_aborted_end_does_not_learn(self, engine, clock):
        await engine.start_interaction("sess-1")
        clock.advance(5)
        result = await engine.end_interaction("sess-1", successful=False, completed_transfer=_completed())

        assert result.found is True
        assert result.profile_updated is False
        assert (await engine.profiles.get_profile("sess-1")).total_transactions == 0

    async def test_end_without_start_never_raises(self, engine):
        result = await engine.end_interaction("ghost", successful=False)
        assert result.found is False

    async def test_end_without_window_still_records_transfer(self, engine):
        result = await engine.end_interaction("sess-1", successful=True, completed_transfer=_completed())
        assert result.found is False
        assert result.profile_updated is True
        profile = await engine.profiles.get_profile("sess-1")
        assert profile.recent_transactions[0].duration_seconds is None

    async def test_feedback_failure_does_not_raise(self, engine):
        engine.profiles.repository.load_profile = AsyncMock(side_effect=DependencyError("db down"))
        await engine.start_interaction("sess-1")
        result = await engine.end_interaction("sess-1", successful=True, completed_transfer=_completed())
        assert result.found is True
        assert result.profile_updated is False

    async def test_event_without_window_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            await engine.record_interaction_event("sess-1", "transfer", "click")

    async def test_interaction_status(self, engine, clock):
        await engine.start_interaction("sess-1", "swap")
        clock.advance(7)
        status = await engine.interaction_status("sess-1", "swap")
        assert status.found is True
        assert status.elapsed_seconds == pytest.approx(7.0)


class TestFacade:
    async def test_security_config_dump(self, engine, config):
        dumped = engine.get_security_config()
        assert dumped["version"] == config.version
        assert dumped["weights"]["amount_ratio"] == 25.0
        assert dumped["verification"]["max_attempts"] == 3

    async def test_discard_session(self, engine):
        await engine.register_verification_email("sess-1", "owner@example.com")
        await engine.start_interaction("sess-1")
        await engine.start_interaction("sess-1", "swap")
        # No window for "send": direct invocation issues a challenge
        await engine.evaluate_transaction(
            "sess-1",
            TransactionRequest(recipient=RECIPIENT, amount=1.0, balance=10.0, interaction_kind="send"),
        )

        removed = await engine.discard_session("sess-1")
        assert removed == {"windows": 2, "challenges": 1, "profiles": 1}
        assert len(engine.profiles) == 0

    async def test_discard_session_keeps_durable_profile(self, engine):
        await engine.record_transaction("sess-1", _completed(2.0))
        await engine.register_verification_email("sess-1", "owner@example.com")

        await engine.discard_session("sess-1")
        summary = await engine.get_behavior_profile_summary("sess-1")
        assert summary.transaction_count == 1
        assert summary.email_verified is True

    async def test_discarded_sessions_do_not_accumulate(self, engine):
        for i in range(50):
            await engine.get_behavior_profile_summary(f"sess-{i}")
            await engine.discard_session(f"sess-{i}")
        assert len(engine.profiles) == 0

    async def test_profile_summary_is_read_only_view(self, engine):
        await engine.record_transaction("sess-1", _completed(2.0))
        summary = await engine.get_behavior_profile_summary("sess-1")
        assert summary.transaction_count == 1
        assert summary.average_amount == pytest.approx(2.0)


class TestLifecycle:
    async def test_sweep_task_reclaims_expired_tokens(self, clock, config, email_sender):
        engine = SecurityEngine(
            config=config,
            email_sender=email_sender,
            clock=clock,
            monotonic=clock.monotonic,
            local_clock=clock,
            sweep_interval_seconds=0.01,
        )
        await engine.challenges.issue("sess-1", "owner@example.com", {"amount": 1.0})
        clock.advance(config.verification.token_ttl_seconds + 1)

        await engine.start()
        try:
            for _ in range(100):
                if len(engine.challenges) == 0:
                    break
                await asyncio.sleep(0.01)
            assert len(engine.challenges) == 0
        finally:
            await engine.stop()

    async def test_stop_without_start(self, engine):
        await engine.stop()
