from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger as log

from tradeguard.core.errors import CircuitOpenError, is_retryable
from tradeguard.core.metrics import Metrics
from tradeguard.risk.circuit_breaker import CircuitBreaker

T = TypeVar("T")


class RetryExecutor:
    """Bounded retry with linear backoff around outbound exchange calls.

    Every failed attempt counts toward the circuit breaker and the API error
    count reported to the kill switch. An open breaker refuses the call
    without touching the network. The same request object is reused on each
    attempt, which keeps client order ids stable across retries.
    """

    def __init__(
        self,
        *,
        attempts: int = 3,
        base_delay_ms: int = 200,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[Metrics] = None,
        kill_switch=None,
    ) -> None:
        self.attempts = max(1, int(attempts))
        self.base_delay_ms = base_delay_ms
        self.circuit_breaker = circuit_breaker or CircuitBreaker(self.attempts * 3, 5 * 60 * 1000)
        self.metrics = metrics
        self.kill_switch = kill_switch
        self.api_error_count = 0

    def _inc(self, name: str) -> None:
        if self.metrics is not None:
            self.metrics.increment(name)

    def _record_api_error(self) -> None:
        self.circuit_breaker.record_failure()
        self.api_error_count += 1
        if self.kill_switch is not None:
            self.kill_switch.check_api_errors(self.api_error_count)

    async def execute(self, fn: Callable[[], Awaitable[T]], label: str) -> T:
        if self.circuit_breaker.is_open():
            self._inc("retry.circuit_breaker_open")
            raise CircuitOpenError(f"Circuit breaker open, refusing {label}")

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.attempts + 1):
            try:
                result = await fn()
            except Exception as exc:
                last_error = exc
                retriable = is_retryable(exc)
                log.warning(
                    f"Retry attempt failed | label={label} attempt={attempt}/{self.attempts} "
                    f"retriable={retriable} error={exc}"
                )
                self._inc("retry.attempt")
                self._record_api_error()
                if not retriable:
                    self._inc("retry.fatal_error")
                    raise
                if attempt < self.attempts:
                    await asyncio.sleep(self.base_delay_ms * attempt / 1000.0)
                continue
            self.circuit_breaker.record_success()
            if self.api_error_count:
                self.api_error_count = 0
                if self.kill_switch is not None:
                    self.kill_switch.check_api_errors(0)
            return result

        self._inc("retry.exhausted")
        assert last_error is not None
        raise last_error
