from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import ccxt


class TradeGuardError(Exception):
    code = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationFailure(TradeGuardError):
    """Bad input or configuration. Never retried."""

    code = "VALIDATION"


class TransientError(TradeGuardError):
    """Timeouts and network errors. Retried with bounded backoff."""

    code = "TRANSIENT"


class CircuitOpenError(TradeGuardError):
    code = "CIRCUIT_OPEN"


_RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "etimedout",
    "econnreset",
    "econnrefused",
    "rate limit",
    "429",
    "502",
    "503",
    "network",
)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (TransientError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    # NetworkError covers RequestTimeout, ExchangeNotAvailable and DDoSProtection
    if isinstance(exc, ccxt.NetworkError):
        return True
    if isinstance(exc, (ValidationFailure, CircuitOpenError, ccxt.ExchangeError)):
        return False
    msg = str(exc).lower()
    return any(p in msg for p in _RETRYABLE_PATTERNS)
