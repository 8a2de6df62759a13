from __future__ import annotations

import asyncio

import ccxt
import pytest
from conftest import FakeClock

from tradeguard.broker.kill_switch import InMemoryKillSwitchRepository, KillSwitch
from tradeguard.broker.retry import RetryExecutor
from tradeguard.core.config import KillSwitchConfig
from tradeguard.core.errors import CircuitOpenError, TransientError, ValidationFailure, is_retryable
from tradeguard.core.metrics import InMemoryMetrics
from tradeguard.core.utils import now_ms
from tradeguard.risk.circuit_breaker import CircuitBreaker


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.calls = 0
        self.result = result

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_recovers_after_transient_failures() -> None:
    metrics = InMemoryMetrics()
    breaker = CircuitBreaker(max_consecutive_failures=10)
    rx = RetryExecutor(attempts=3, base_delay_ms=0, circuit_breaker=breaker, metrics=metrics)
    fn = Flaky([TransientError("timeout"), asyncio.TimeoutError()])
    assert asyncio.run(rx.execute(fn, "fetch_ticker")) == "ok"
    assert fn.calls == 3
    assert metrics.counters["retry.attempt"] == 2
    assert breaker.failure_count == 0
    assert rx.api_error_count == 0


def test_non_retryable_fails_fast() -> None:
    metrics = InMemoryMetrics()
    rx = RetryExecutor(attempts=3, base_delay_ms=0, metrics=metrics)
    fn = Flaky([ValidationFailure("bad symbol")])
    with pytest.raises(ValidationFailure):
        asyncio.run(rx.execute(fn, "create_order"))
    assert fn.calls == 1
    assert metrics.counters["retry.fatal_error"] == 1


def test_exhaustion_reraises_last_error() -> None:
    metrics = InMemoryMetrics()
    rx = RetryExecutor(attempts=3, base_delay_ms=0, metrics=metrics)
    fn = Flaky([TransientError("a"), TransientError("b"), TransientError("c")])
    with pytest.raises(TransientError, match="c"):
        asyncio.run(rx.execute(fn, "fetch_ohlcv"))
    assert fn.calls == 3
    assert metrics.counters["retry.exhausted"] == 1
    assert rx.api_error_count == 3


def test_open_breaker_refuses_without_calling() -> None:
    metrics = InMemoryMetrics()
    breaker = CircuitBreaker(max_consecutive_failures=1)
    breaker.record_failure(now_ms())
    rx = RetryExecutor(attempts=3, base_delay_ms=0, circuit_breaker=breaker, metrics=metrics)
    fn = Flaky([])
    with pytest.raises(CircuitOpenError):
        asyncio.run(rx.execute(fn, "fetch_ticker"))
    assert fn.calls == 0
    assert metrics.counters["retry.circuit_breaker_open"] == 1


def test_api_errors_reach_kill_switch() -> None:
    ks = KillSwitch(KillSwitchConfig(api_error_threshold=5), clock=FakeClock())
    rx = RetryExecutor(attempts=5, base_delay_ms=0, circuit_breaker=CircuitBreaker(max_consecutive_failures=50), kill_switch=ks)
    fn = Flaky([TransientError("503")] * 5)
    with pytest.raises(TransientError):
        asyncio.run(rx.execute(fn, "fetch_ticker"))
    assert ks.is_triggered()
    assert ks.get_state().api_error_count == 5


def test_success_resets_persisted_api_error_count() -> None:
    repo = InMemoryKillSwitchRepository()
    ks = KillSwitch(KillSwitchConfig(api_error_threshold=5), clock=FakeClock())
    ks.init(repo)
    ks.set_persist_fn(lambda: ks.persist(repo))
    rx = RetryExecutor(attempts=3, base_delay_ms=0, circuit_breaker=CircuitBreaker(max_consecutive_failures=50), kill_switch=ks)
    with pytest.raises(TransientError):
        asyncio.run(rx.execute(Flaky([TransientError("503")] * 3), "fetch_ticker"))
    assert repo.load(ks.state_id).api_error_count == 3

    assert asyncio.run(rx.execute(Flaky([TransientError("503")]), "fetch_ticker")) == "ok"
    assert rx.api_error_count == 0
    assert ks.get_state().api_error_count == 0
    assert repo.load(ks.state_id).api_error_count == 0
    assert not ks.is_triggered()


def test_retryable_classification() -> None:
    assert is_retryable(TransientError("x"))
    assert is_retryable(asyncio.TimeoutError())
    assert is_retryable(ccxt.RequestTimeout("slow"))
    assert is_retryable(ccxt.NetworkError("reset"))
    assert is_retryable(RuntimeError("HTTP 503 Service Unavailable"))
    assert not is_retryable(ccxt.InsufficientFunds("no funds"))
    assert not is_retryable(ValidationFailure("bad"))
    assert not is_retryable(CircuitOpenError("open"))
    assert not is_retryable(ValueError("bad quantity"))
