"""
Error Classification for Upstream Failures.

Maps any exception raised while calling the upstream API onto one of four
kinds (AUTH, RATE_LIMIT, NETWORK, UNKNOWN) with two explicit tables:

    Status table (checked first):
        401        -> AUTH
        408        -> NETWORK
        429        -> RATE_LIMIT
        500-599    -> NETWORK
        other      -> UNKNOWN

    Message table (case-insensitive substrings, used without a status):
        "api key", "unauthorized", "authentication" ... -> AUTH
        "rate limit", "too many requests"               -> RATE_LIMIT
        "timed out", "timeout", "connection", ...       -> NETWORK

The exception chain (``__cause__`` / ``__context__``) is walked so a wrapped
error classifies like its origin.

Usage:
    try:
        audio = client.synthesize(chunk.content, voice)
    except Exception as exc:
        info = classify_error(exc)
        if is_retryable(info):
            ...
"""
from __future__ import annotations

import re
from typing import Iterator, Optional, Tuple

import httpx

from tts_player.core.errors import ErrorCode, ErrorInfo

STATUS_TABLE = {
    401: ErrorCode.AUTH,
    408: ErrorCode.NETWORK,
    429: ErrorCode.RATE_LIMIT,
}

MESSAGE_TABLE: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (ErrorCode.AUTH, (
        "api key",
        "api_key",
        "apikey",
        "unauthorized",
        "authentication",
        "invalid credentials",
    )),
    (ErrorCode.RATE_LIMIT, (
        "rate limit",
        "rate_limit",
        "too many requests",
    )),
    (ErrorCode.NETWORK, (
        "timed out",
        "timeout",
        "connection",
        "network",
        "name resolution",
    )),
)

_HTTP_STATUS = re.compile(r"HTTP (\d{3})")
_RETRY_AFTER = re.compile(r"retry after (\d+(?:\.\d+)?)", re.IGNORECASE)


def _chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _status_of(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    match = _HTTP_STATUS.search(str(exc))
    return int(match.group(1)) if match else None


def _retry_after_of(exc: BaseException) -> Optional[float]:
    value = getattr(exc, "retry_after", None)
    if value is not None:
        try:
            return float(value)
        except (TypeError, ValueError):
            pass
    match = _RETRY_AFTER.search(str(exc))
    return float(match.group(1)) if match else None


def kind_for_status(status_code: int) -> str:
    """Status table lookup."""
    if status_code in STATUS_TABLE:
        return STATUS_TABLE[status_code]
    if 500 <= status_code <= 599:
        return ErrorCode.NETWORK
    return ErrorCode.UNKNOWN


def kind_for_message(message: str) -> Optional[str]:
    """Message table lookup; None when no phrase matches."""
    lowered = message.lower()
    for kind, phrases in MESSAGE_TABLE:
        if any(phrase in lowered for phrase in phrases):
            return kind
    return None


def classify_error(exc: BaseException, default_retry_after_s: float = 60.0) -> ErrorInfo:
    """
    Classify a failure into an ErrorInfo.

    Args:
        exc: Exception raised by the client (possibly wrapped).
        default_retry_after_s: Wait used for RATE_LIMIT without a positive Retry-After.

    Returns:
        ErrorInfo whose message is str(exc) verbatim.
    """
    message = str(exc) or type(exc).__name__
    chain = list(_chain(exc))

    status: Optional[int] = None
    for item in chain:
        status = _status_of(item)
        if status is not None:
            break

    retry_after: Optional[float] = None
    for item in chain:
        retry_after = _retry_after_of(item)
        if retry_after is not None:
            break

    kind: Optional[str] = None
    if status is not None:
        kind = kind_for_status(status)
    else:
        for item in chain:
            if isinstance(item, httpx.TransportError):
                kind = ErrorCode.NETWORK
                break
            kind = kind_for_message(str(item))
            if kind is not None:
                break

    kind = kind or ErrorCode.UNKNOWN

    if kind == ErrorCode.RATE_LIMIT:
        return ErrorInfo(
            kind=kind,
            message=message,
            status_code=status,
            retry_after_s=retry_after if retry_after is not None and retry_after > 0 else default_retry_after_s,
        )
    return ErrorInfo(kind=kind, message=message, status_code=status)


def is_retryable(info: ErrorInfo) -> bool:
    """Only transport-level failures are retried with backoff."""
    return info.kind == ErrorCode.NETWORK
