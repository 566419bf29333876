"""Error taxonomy for the transfer risk engine.

Every error carries a stable ``code`` for API clients, a ``retryable`` flag,
and a ``details`` dict with whatever the caller needs to render actionable
feedback (attempts remaining, expiry time, ...).
"""

from typing import Any


class SecurityError(Exception):
    code = "security_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(SecurityError, ValueError):
    """Malformed address, amount, or email. Raised before any state mutation."""

    code = "validation_error"


class NotFoundError(SecurityError, LookupError):
    """Unknown session, token, or interaction window. Nothing to resume."""

    code = "not_found"


class ExpiredError(SecurityError):
    code = "expired"


class AttemptsExhaustedError(SecurityError):
    code = "attempts_exhausted"


class WrongCodeError(SecurityError):
    code = "wrong_code"


class NotVerifiedError(SecurityError):
    code = "not_verified"


class InsufficientBalanceError(SecurityError):
    code = "insufficient_balance"


class DependencyError(SecurityError):
    """Profile store or email transport failure. Safe to retry."""

    code = "dependency_error"
    retryable = True
