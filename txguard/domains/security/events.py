"""Security event publishing for downstream consumers (audit, alerting)."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger()

CHALLENGE_ISSUED = "transfer-challenge-issued"
TRANSFER_VERIFIED = "transfer-verified"
TRANSFER_RELEASED = "transfer-released"
TRANSFER_REJECTED = "transfer-rejected"


class SecurityEventPublisher:
    """Publishes gate outcomes to Kafka. A missing producer makes this a no-op."""

    def __init__(
        self,
        producer=None,
        topic: str = "txguard.security.events",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._producer = producer
        self._topic = topic
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def enabled(self) -> bool:
        return self._producer is not None

    def build_event(
        self, event_type: str, session_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return {
            "event_id": str(uuid.uuid4()),
            "event_type": event_type,
            "session_id": session_id,
            "timestamp": self._clock().isoformat(),
            "payload": payload,
        }

    async def publish(self, event_type: str, session_id: str, payload: dict[str, Any]) -> bool:
        """Send one event. Failures are logged, never raised."""
        if self._producer is None:
            logger.debug("kafka_producer_not_available", event_type=event_type)
            return False

        event = self.build_event(event_type, session_id, payload)
        try:
            await self._producer.send_and_wait(
                self._topic, value=event, key=session_id.encode("utf-8")
            )
        except Exception:
            logger.exception(
                "security_event_publish_failed", event_type=event_type, topic=self._topic
            )
            return False

        logger.info("security_event_published", event_type=event_type, topic=self._topic)
        return True
