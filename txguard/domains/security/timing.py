"""Interaction-window timing tracker.

Tracks how long the owner has had a transfer surface open, keyed by
(session, interaction kind). ``snapshot`` is a non-destructive read used by
scoring; ``end`` is the destructive read whose duration feeds the baseline.
Interaction submission is trusted client input and is not throttled here.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from .models import InteractionEndResult, InteractionHandle, TimingSnapshot

logger = structlog.get_logger()


@dataclass
class InteractionEvent:
    interaction_type: str
    at: float


@dataclass
class ModalSession:
    session_id: str
    kind: str
    started: float
    started_at: datetime
    interaction_count: int = 0
    last_interaction: float | None = None
    events: list[InteractionEvent] = field(default_factory=list)


class ModalTimingTracker:
    # Events retained per window; only recency is read back
    MAX_EVENTS = 50

    def __init__(
        self,
        monotonic: Callable[[], float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._monotonic = monotonic or time.monotonic
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sessions: dict[tuple[str, str], ModalSession] = {}
        self._lock = asyncio.Lock()

    async def start(self, session_id: str, kind: str = "transfer") -> InteractionHandle:
        """Begin timing; silently replaces an unterminated window for the same key."""
        modal = ModalSession(
            session_id=session_id,
            kind=kind,
            started=self._monotonic(),
            started_at=self._clock(),
        )
        async with self._lock:
            replaced = (session_id, kind) in self._sessions
            self._sessions[(session_id, kind)] = modal

        logger.info(
            "modal_session_started", session_id=session_id, kind=kind, replaced=replaced
        )
        return InteractionHandle(session_id=session_id, kind=kind, started_at=modal.started_at)

    async def record_interaction(
        self, session_id: str, kind: str = "transfer", interaction_type: str = "generic"
    ) -> int | None:
        """Count one interaction. Returns the new count, or None with no active window."""
        async with self._lock:
            modal = self._sessions.get((session_id, kind))
            if modal is None:
                return None
            now = self._monotonic()
            modal.events.append(InteractionEvent(interaction_type=interaction_type, at=now))
            del modal.events[: -self.MAX_EVENTS]
            modal.interaction_count += 1
            modal.last_interaction = now
            return modal.interaction_count

    async def snapshot(self, session_id: str, kind: str = "transfer") -> TimingSnapshot:
        async with self._lock:
            modal = self._sessions.get((session_id, kind))
            if modal is None:
                return TimingSnapshot(found=False)
            now = self._monotonic()
            return TimingSnapshot(
                found=True,
                elapsed_seconds=max(0.0, now - modal.started),
                interaction_count=modal.interaction_count,
                seconds_since_last_interaction=(
                    now - modal.last_interaction if modal.last_interaction is not None else None
                ),
                started_at=modal.started_at,
            )

    async def end(
        self, session_id: str, kind: str = "transfer", successful: bool = True
    ) -> InteractionEndResult:
        """Close the window. Never raises; ending an unknown window is a no-op."""
        async with self._lock:
            modal = self._sessions.pop((session_id, kind), None)
            now = self._monotonic()

        if modal is None:
            logger.debug("modal_session_end_without_start", session_id=session_id, kind=kind)
            return InteractionEndResult(found=False, successful=successful)

        duration = max(0.0, now - modal.started)
        logger.info(
            "modal_session_ended",
            session_id=session_id,
            kind=kind,
            successful=successful,
            duration_seconds=round(duration, 2),
            interaction_count=modal.interaction_count,
        )
        return InteractionEndResult(
            found=True,
            successful=successful,
            duration_seconds=duration,
            interaction_count=modal.interaction_count,
        )

    async def discard_session(self, session_id: str) -> int:
        """Drop every window belonging to a session (session teardown)."""
        async with self._lock:
            keys = [key for key in self._sessions if key[0] == session_id]
            for key in keys:
                del self._sessions[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._sessions)
