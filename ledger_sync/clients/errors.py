"""Exceptions raised by provider adapters and the sync pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ProviderError(Exception):
    """Error returned by a financial-data aggregator.

    Attributes:
        code: Stable machine-readable error code.
        status: HTTP-like status when the adapter knows one.
    """

    default_code = "PROVIDER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status


class TransientProviderError(ProviderError):
    """Temporary failure (network blip, 5xx); safe to retry."""

    default_code = "PROVIDER_UNAVAILABLE"


class RateLimitError(ProviderError):
    """Provider asked us to slow down."""

    default_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        code: Optional[str] = None,
        status: Optional[int] = 429,
    ):
        super().__init__(message, code=code, status=status)
        self.retry_after = retry_after


class AuthenticationError(ProviderError):
    """Credentials rejected or expired; the user must re-link the institution."""

    default_code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid credentials", code: Optional[str] = None):
        super().__init__(message, code=code, status=401)


class ConsentError(Exception):
    """The user has not granted consent for financial data access."""

    code = "CONSENT_REQUIRED"


class RecordError(ValueError):
    """A single provider record is malformed and cannot be normalized."""

    code = "INVALID_RECORD"

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class ErrorKind(Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    AUTHENTICATION = "authentication"
    CONSENT = "consent"
    DATA = "data"
    PERMANENT = "permanent"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSIENT, ErrorKind.RATE_LIMITED)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception to the retry decision the engine makes for it."""
    if isinstance(exc, RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, AuthenticationError):
        return ErrorKind.AUTHENTICATION
    if isinstance(exc, TransientProviderError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, ProviderError):
        if exc.status is not None and exc.status >= 500:
            return ErrorKind.TRANSIENT
        return ErrorKind.PERMANENT
    if isinstance(exc, ConsentError):
        return ErrorKind.CONSENT
    if isinstance(exc, RecordError):
        return ErrorKind.DATA
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def error_code(exc: BaseException) -> str:
    """Best-effort error code for any exception."""
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code
    if isinstance(exc, TimeoutError):
        return "TIMEOUT"
    if isinstance(exc, ConnectionError):
        return "CONNECTION_ERROR"
    return "SYNC_ERROR"
