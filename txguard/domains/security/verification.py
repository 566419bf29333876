"""One-time email verification challenges.

Lifecycle of a token::

    issued -> pending (attempts 0..max) -> verified -> confirmed (deleted)
                                        -> expired (deleted)
                                        -> attempts exhausted (deleted)

Expiry is checked on every access path; ``sweep_expired`` only reclaims
memory. Issuing a challenge for a session revokes that session's earlier
unverified challenges, so at most one live challenge exists per session.
"""

import asyncio
import hmac
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from .config import SecurityConfig, default_config
from .errors import ExpiredError, NotFoundError, NotVerifiedError
from .models import (
    IssuedChallenge,
    TokenStatus,
    VerificationResult,
    VerificationStatus,
    mask_email,
)

logger = structlog.get_logger()


@dataclass
class VerificationToken:
    token_id: str
    session_id: str
    email: str
    code: str
    tx_snapshot: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    attempts: int = 0
    verified: bool = False
    verified_at: datetime | None = field(default=None)


class VerificationChallengeStateMachine:
    def __init__(
        self,
        config: SecurityConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = (config or default_config).verification
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tokens: dict[str, VerificationToken] = {}
        self._by_session: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    def _generate_code(self) -> str:
        length = self._config.code_length
        return f"{secrets.randbelow(10**length):0{length}d}"

    def _remove(self, token: VerificationToken) -> None:
        """Drop a token from both indexes. Caller holds the lock."""
        self._tokens.pop(token.token_id, None)
        ids = self._by_session.get(token.session_id)
        if ids is not None:
            ids.discard(token.token_id)
            if not ids:
                del self._by_session[token.session_id]

    def _live(self, token_id: str, now: datetime) -> VerificationToken | None:
        """Look up a token, deleting it if expired. Caller holds the lock.

        Raises ExpiredError for a token found past its expiry.
        """
        token = self._tokens.get(token_id)
        if token is None:
            return None
        if now >= token.expires_at:
            self._remove(token)
            raise ExpiredError(
                "Verification token expired",
                token_id=token_id,
                expires_at=token.expires_at.isoformat(),
            )
        return token

    async def issue(
        self, session_id: str, email: str, tx_snapshot: dict[str, Any]
    ) -> IssuedChallenge:
        now = self._clock()
        token = VerificationToken(
            token_id=f"verify-{uuid.uuid4().hex}",
            session_id=session_id,
            email=email,
            code=self._generate_code(),
            tx_snapshot=dict(tx_snapshot),
            created_at=now,
            expires_at=now + timedelta(seconds=self._config.token_ttl_seconds),
        )

        async with self._lock:
            replaced = [
                self._tokens[token_id]
                for token_id in self._by_session.get(session_id, set())
                if token_id in self._tokens and not self._tokens[token_id].verified
            ]
            for old in replaced:
                self._remove(old)
            self._tokens[token.token_id] = token
            self._by_session.setdefault(session_id, set()).add(token.token_id)

        logger.info(
            "verification_token_issued",
            session_id=session_id,
            token_id=token.token_id,
            email=mask_email(email),
            expires_at=token.expires_at.isoformat(),
            replaced=len(replaced),
        )
        return IssuedChallenge(
            token_id=token.token_id,
            session_id=session_id,
            email=email,
            code=token.code,
            expires_at=token.expires_at,
        )

    async def attempt(self, token_id: str, code: str) -> VerificationResult:
        """Check a supplied code. Failures are results, not exceptions."""
        max_attempts = self._config.max_attempts
        async with self._lock:
            now = self._clock()
            try:
                token = self._live(token_id, now)
            except ExpiredError:
                logger.info("verification_token_expired", token_id=token_id)
                return VerificationResult(token_id=token_id, status=VerificationStatus.EXPIRED)
            if token is None:
                return VerificationResult(token_id=token_id, status=VerificationStatus.NOT_FOUND)

            if token.verified:
                return VerificationResult(
                    token_id=token_id,
                    status=VerificationStatus.ALREADY_VERIFIED,
                    expires_at=token.expires_at,
                    tx_snapshot=dict(token.tx_snapshot),
                )

            if token.attempts >= max_attempts:
                self._remove(token)
                logger.warning(
                    "verification_attempts_exhausted",
                    token_id=token_id,
                    session_id=token.session_id,
                )
                return VerificationResult(
                    token_id=token_id, status=VerificationStatus.ATTEMPTS_EXHAUSTED
                )

            token.attempts += 1
            if not hmac.compare_digest(token.code.encode(), str(code).strip().encode()):
                remaining = max_attempts - token.attempts
                logger.info(
                    "verification_wrong_code",
                    token_id=token_id,
                    session_id=token.session_id,
                    attempts_remaining=remaining,
                )
                return VerificationResult(
                    token_id=token_id,
                    status=VerificationStatus.WRONG_CODE,
                    attempts_remaining=remaining,
                    expires_at=token.expires_at,
                )

            token.verified = True
            token.verified_at = now
            snapshot = dict(token.tx_snapshot)
            session_id = token.session_id

        logger.info("verification_succeeded", token_id=token_id, session_id=session_id)
        return VerificationResult(
            token_id=token_id,
            status=VerificationStatus.VERIFIED,
            expires_at=token.expires_at,
            tx_snapshot=snapshot,
        )

    async def confirm(self, token_id: str) -> dict[str, Any]:
        """Consume a verified token exactly once and release its snapshot."""
        async with self._lock:
            token = self._live(token_id, self._clock())
            if token is None:
                raise NotFoundError("Verification token not found", token_id=token_id)
            if not token.verified:
                raise NotVerifiedError(
                    "Verification code has not been confirmed",
                    token_id=token_id,
                    attempts_remaining=self._config.max_attempts - token.attempts,
                )
            self._remove(token)

        logger.info("verification_token_consumed", token_id=token_id, session_id=token.session_id)
        return dict(token.tx_snapshot)

    async def revoke(self, token_id: str) -> bool:
        async with self._lock:
            token = self._tokens.get(token_id)
            if token is None:
                return False
            self._remove(token)
        logger.info("verification_token_revoked", token_id=token_id)
        return True

    async def status(self, token_id: str) -> TokenStatus:
        async with self._lock:
            try:
                token = self._live(token_id, self._clock())
            except ExpiredError:
                return TokenStatus(token_id=token_id, exists=False, expired=True)
            if token is None:
                return TokenStatus(token_id=token_id, exists=False)
            return TokenStatus(
                token_id=token_id,
                exists=True,
                verified=token.verified,
                attempts_remaining=max(0, self._config.max_attempts - token.attempts),
                expires_at=token.expires_at,
            )

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [t for t in self._tokens.values() if now >= t.expires_at]
            for token in expired:
                self._remove(token)
        if expired:
            logger.info("verification_tokens_swept", count=len(expired))
        return len(expired)

    async def discard_session(self, session_id: str) -> int:
        async with self._lock:
            tokens = [
                self._tokens[token_id]
                for token_id in self._by_session.get(session_id, set())
                if token_id in self._tokens
            ]
            for token in tokens:
                self._remove(token)
        return len(tokens)

    def __len__(self) -> int:
        return len(self._tokens)
