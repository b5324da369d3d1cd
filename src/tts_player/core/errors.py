"""
Error Taxonomy for tts-player.

Every failure that reaches a caller is a TTSError carrying one of six codes:

    VALIDATION  - empty or invalid input, rejected before chunking
    AUTH        - bad or missing API credential (upstream 401)
    RATE_LIMIT  - upstream 429 that outlasted the wait budget
    NETWORK     - transport failure, timeout or 5xx after retries
    ASSEMBLY    - ffmpeg missing or failing to remux chunks
    UNKNOWN     - anything else, upstream message passed through

Each code has exactly one user-facing message (``user_message``); the rate
limit message states the wait so users do not hammer the retry button.

Example:
    >>> err = RateLimitError(retry_after_s=45)
    >>> err.user_message
    'Rate limit reached. Try again in 45 seconds.'
    >>> err.to_dict()["error"]
    'RATE_LIMIT'
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional


class ErrorCode:
    """Error kinds shared by the classifier, the service and the API layer."""
    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    ASSEMBLY = "ASSEMBLY"
    UNKNOWN = "UNKNOWN"


AUTH_MESSAGE = "Authentication failed. Please check your API key."
NETWORK_MESSAGE = "Network error. Please check your connection and try again."
ASSEMBLY_MESSAGE = "Failed to merge audio chunks. Make sure ffmpeg is installed."


def rate_limit_message(retry_after_s: float) -> str:
    seconds = max(1, int(math.ceil(retry_after_s)))
    return f"Rate limit reached. Try again in {seconds} seconds."


@dataclass(frozen=True)
class ErrorInfo:
    """
    Classified failure attached to chunk results and generation outcomes.

    Attributes:
        kind: One of the ErrorCode values.
        message: Raw (technical) message of the underlying failure.
        status_code: Upstream HTTP status, when there was one.
        retry_after_s: Server-advertised wait for RATE_LIMIT.
    """
    kind: str
    message: str
    status_code: Optional[int] = None
    retry_after_s: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.retry_after_s is not None:
            result["retry_after_s"] = self.retry_after_s
        return result


class TTSError(Exception):
    """
    Base exception for everything surfaced to callers.

    Attributes:
        message: Technical message (logged, returned in API bodies).
        code: ErrorCode value.
        details: Optional dictionary with additional context.
    """

    def __init__(self, message: str, code: str = ErrorCode.UNKNOWN, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Single human-readable message for this error kind."""
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Standardized error body for API responses."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.user_message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(TTSError):
    """Invalid input, rejected before any upstream call."""

    def __init__(self, message: str, reason: str = "INVALID_INPUT", details: Optional[Dict] = None):
        merged = {"reason": reason}
        merged.update(details or {})
        super().__init__(message, ErrorCode.VALIDATION, merged)
        self.reason = reason


class AuthError(TTSError):
    def __init__(self, message: str = AUTH_MESSAGE, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.AUTH, details)

    @property
    def user_message(self) -> str:
        return AUTH_MESSAGE


class RateLimitError(TTSError):
    """Upstream kept rate limiting past the request's wait budget."""

    def __init__(self, message: str = "", retry_after_s: float = 60.0, details: Optional[Dict] = None):
        self.retry_after_s = retry_after_s
        merged = {"retry_after_s": retry_after_s}
        merged.update(details or {})
        super().__init__(message or rate_limit_message(retry_after_s), ErrorCode.RATE_LIMIT, merged)

    @property
    def user_message(self) -> str:
        return rate_limit_message(self.retry_after_s)


class NetworkError(TTSError):
    def __init__(self, message: str = NETWORK_MESSAGE, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.NETWORK, details)

    @property
    def user_message(self) -> str:
        return NETWORK_MESSAGE


class AssemblyError(TTSError):
    """ffmpeg was unavailable or failed to remux the chunk files."""

    def __init__(self, message: str = ASSEMBLY_MESSAGE, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.ASSEMBLY, details)

    @property
    def user_message(self) -> str:
        return ASSEMBLY_MESSAGE


class UnknownError(TTSError):
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.UNKNOWN, details)


def error_from_info(info: ErrorInfo, details: Optional[Dict] = None) -> TTSError:
    """Build the TTSError subclass matching a classified failure."""
    if info.kind == ErrorCode.AUTH:
        return AuthError(info.message, details)
    if info.kind == ErrorCode.RATE_LIMIT:
        return RateLimitError(info.message, retry_after_s=info.retry_after_s or 60.0, details=details)
    if info.kind == ErrorCode.NETWORK:
        return NetworkError(info.message, details)
    if info.kind == ErrorCode.ASSEMBLY:
        return AssemblyError(info.message, details)
    if info.kind == ErrorCode.VALIDATION:
        return ValidationError(info.message, details=details)
    return UnknownError(info.message, details)
