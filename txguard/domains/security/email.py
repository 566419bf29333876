"""Verification email delivery.

The engine only produces the code and expiry; delivery is a collaborator.
Without EmailJS credentials the service runs in demo mode and logs the code.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog
from pydantic import BaseModel

from txguard.config import Settings

from .models import mask_email

logger = structlog.get_logger()


class DeliveryResult(BaseModel):
    success: bool
    demo_mode: bool = False
    message_id: str | None = None
    error: str | None = None


def _short_address(address: str | None) -> str:
    if not address:
        return "N/A"
    return f"{address[:10]}...{address[-8:]}"


class EmailSender(ABC):
    @abstractmethod
    async def send(self, to: str, code: str, context: dict[str, Any]) -> DeliveryResult:
        """Deliver a verification code. Must not raise for transport failures."""

    async def close(self) -> None:
        return None


class LoggingEmailSender(EmailSender):
    """Demo mode: the code goes to the log instead of an inbox."""

    async def send(self, to: str, code: str, context: dict[str, Any]) -> DeliveryResult:
        logger.warning(
            "verification_email_demo_mode",
            to=to,
            code=code,
            amount=context.get("amount"),
            token=context.get("token", "ETH"),
            recipient=context.get("recipient"),
        )
        return DeliveryResult(success=True, demo_mode=True)


class EmailJSSender(EmailSender):
    """Sends codes through the EmailJS REST API."""

    def __init__(
        self,
        service_id: str,
        template_id: str,
        public_key: str,
        private_key: str = "",
        endpoint: str = "https://api.emailjs.com/api/v1.0/email/send",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._service_id = service_id
        self._template_id = template_id
        self._public_key = public_key
        self._private_key = private_key
        self._endpoint = endpoint
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def build_payload(self, to: str, code: str, context: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "service_id": self._service_id,
            "template_id": self._template_id,
            "user_id": self._public_key,
            "template_params": {
                "to_email": to,
                "code": code,
                "amount": context.get("amount"),
                "token": context.get("token") or "ETH",
                "to_address": _short_address(context.get("recipient")),
            },
        }
        if self._private_key:
            payload["accessToken"] = self._private_key
        return payload

    async def send(self, to: str, code: str, context: dict[str, Any]) -> DeliveryResult:
        try:
            response = await self._client.post(
                self._endpoint, json=self.build_payload(to, code, context)
            )
        except httpx.HTTPError as exc:
            logger.error("verification_email_transport_error", to=mask_email(to), error=str(exc))
            return DeliveryResult(success=False, error=str(exc))

        if response.is_success:
            logger.info("verification_email_sent", to=mask_email(to))
            return DeliveryResult(success=True, message_id=response.headers.get("x-request-id"))

        logger.error(
            "verification_email_rejected",
            to=mask_email(to),
            status_code=response.status_code,
            body=response.text[:200],
        )
        return DeliveryResult(success=False, error=f"EmailJS returned {response.status_code}")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_email_sender(settings: Settings) -> EmailSender:
    """EmailJS when service id, template id, and public key are all set."""
    if settings.emailjs_service_id and settings.emailjs_template_id and settings.emailjs_public_key:
        logger.info("email_sender_configured", provider="emailjs")
        return EmailJSSender(
            service_id=settings.emailjs_service_id,
            template_id=settings.emailjs_template_id,
            public_key=settings.emailjs_public_key,
            private_key=settings.emailjs_private_key,
            endpoint=settings.emailjs_endpoint,
            timeout=settings.email_timeout_seconds,
        )
    logger.warning("email_sender_demo_mode", reason="emailjs_credentials_missing")
    return LoggingEmailSender()
