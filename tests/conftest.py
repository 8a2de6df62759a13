from __future__ import annotations

from typing import List, Optional

import pytest

from tradeguard.core.config import AppConfig
from tradeguard.core.metrics import InMemoryMetrics
from tradeguard.core.types import Balance, Candle, Order, OrderRequest, Signal, Ticker
from tradeguard.exchanges.adapter import ExchangeAdapter

HOUR_MS = 60 * 60 * 1000
T0 = 1_700_000_000_000


def make_ticker(bid: float = 49995.0, ask: float = 50005.0, last: float = 50000.0,
                symbol: str = "BTC/USDT", volume_24h: Optional[float] = 1_000_000.0, time: int = T0) -> Ticker:
    return Ticker(symbol=symbol, bid=bid, ask=ask, last=last, time=time, volume_24h=volume_24h)


def make_candles(n: int = 30, symbol: str = "BTC/USDT", start: int = T0) -> List[Candle]:
    return [
        Candle(symbol=symbol, interval="1h", time=start + i * HOUR_MS,
               open=100.0, high=100.7, low=99.9, close=100.5, volume=1000.0)
        for i in range(n)
    ]


class FakeExchange(ExchangeAdapter):
    def __init__(self, ticker: Optional[Ticker] = None, candles: Optional[List[Candle]] = None) -> None:
        self.ticker = ticker or make_ticker()
        self.candles = candles if candles is not None else make_candles()
        self.placed: List[OrderRequest] = []
        self.fail_with: Optional[Exception] = None

    async def get_ticker(self, symbol: str) -> Ticker:
        if self.fail_with is not None:
            raise self.fail_with
        return self.ticker

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        return list(self.candles[-limit:])

    async def place_order(self, request: OrderRequest) -> Order:
        self.placed.append(request)
        return Order(
            order_id=f"ex-{len(self.placed)}",
            client_order_id=request.client_order_id,
            symbol=request.symbol,
            side=request.side,
            type=request.type,
            quantity=request.quantity,
            status="open",
            filled_quantity=0.0,
            created_at=T0,
            updated_at=T0,
        )

    async def cancel_order(self, order_id: str, symbol: Optional[str] = None) -> None:
        return None

    async def get_order(self, order_id: str, symbol: Optional[str] = None) -> Order:
        raise NotImplementedError

    async def list_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return []

    async def get_balances(self) -> List[Balance]:
        return [Balance(asset="USDT", free=10000.0, locked=0.0)]


class FixedSignal:
    def __init__(self, action: str = "BUY", confidence: float = 0.5) -> None:
        self.action = action
        self.confidence = confidence

    def generate(self, symbol, candles, ticker) -> Signal:
        return Signal(action=self.action, confidence=self.confidence, reason="fixed")


class RecordingAlerter:
    def __init__(self) -> None:
        self.alerts: List[tuple] = []

    def notify(self, title: str, message: str) -> None:
        self.alerts.append((title, message))


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance_min(self, minutes: float) -> None:
        self.now += int(minutes * 60_000)


@pytest.fixture(autouse=True)
def _no_db_override(monkeypatch):
    monkeypatch.delenv("TRADEGUARD_DB", raising=False)


@pytest.fixture
def cfg() -> AppConfig:
    return AppConfig()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()
