from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import ccxt.async_support as ccxt_async
from loguru import logger as log

from tradeguard.broker.retry import RetryExecutor
from tradeguard.core.types import Balance, Candle, Order, OrderRequest, Ticker
from tradeguard.core.utils import now_ms
from tradeguard.exchanges.adapter import ExchangeAdapter

T = TypeVar("T")

_STATUS_MAP = {
    "open": "open",
    "closed": "filled",
    "canceled": "canceled",
    "cancelled": "canceled",
    "expired": "canceled",
    "rejected": "rejected",
}


def _build_exchange(
    exchange_id: str,
    api_key: Optional[str],
    api_secret: Optional[str],
    market_type: str,
    testnet: bool,
):
    ex_class = getattr(ccxt_async, exchange_id)
    options: Dict[str, object] = {}
    if market_type == "futures":
        # Many exchanges rely on defaultType to route endpoints
        options["defaultType"] = "future"
    ex = ex_class({
        "apiKey": api_key or "",
        "secret": api_secret or "",
        "enableRateLimit": True,
        "options": options,
    })
    if testnet:
        try:
            ex.set_sandbox_mode(True)
        except ccxt_async.NotSupported as e:
            log.warning(f"Exchange {exchange_id} does not support sandbox mode: {e}")
    return ex


def _f(value: Any, default: float = 0.0) -> float:
    return float(value) if value is not None else default


def to_ticker(symbol: str, raw: Dict[str, Any]) -> Ticker:
    last = _f(raw.get("last") or raw.get("close"))
    return Ticker(
        symbol=symbol,
        bid=_f(raw.get("bid"), last),
        ask=_f(raw.get("ask"), last),
        last=last,
        time=int(raw.get("timestamp") or now_ms()),
        volume_24h=_f(raw["quoteVolume"]) if raw.get("quoteVolume") is not None else (
            _f(raw["baseVolume"]) if raw.get("baseVolume") is not None else None
        ),
    )


def to_order(raw: Dict[str, Any], fallback: Optional[OrderRequest] = None) -> Order:
    ts = int(raw.get("timestamp") or now_ms())
    status = _STATUS_MAP.get(str(raw.get("status") or ""), "pending")
    client_order_id = raw.get("clientOrderId") or (fallback.client_order_id if fallback else "")
    quantity = _f(raw.get("amount"), fallback.quantity if fallback else 0.0)
    return Order(
        order_id=str(raw.get("id") or ""),
        client_order_id=str(client_order_id),
        symbol=str(raw.get("symbol") or (fallback.symbol if fallback else "")),
        side=raw.get("side") or (fallback.side if fallback else "buy"),
        type=raw.get("type") or (fallback.type if fallback else "market"),
        quantity=quantity,
        price=_f(raw["price"]) if raw.get("price") is not None else None,
        status=status,
        filled_quantity=_f(raw.get("filled")),
        avg_fill_price=_f(raw["average"]) if raw.get("average") is not None else None,
        reason=None,
        created_at=ts,
        updated_at=int(raw.get("lastTradeTimestamp") or ts),
    )


class CcxtExchangeAdapter(ExchangeAdapter):
    """Exchange capability over ccxt's async client.

    Every call runs under a fixed timeout inside the RetryExecutor, so
    timeouts are retried and counted toward the circuit breaker.
    """

    def __init__(
        self,
        exchange_id: str,
        retry: RetryExecutor,
        *,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        market_type: str = "spot",
        testnet: bool = False,
        timeout_sec: float = 10.0,
        exchange=None,
    ) -> None:
        self.exchange_id = exchange_id
        self.retry = retry
        self.timeout_sec = timeout_sec
        self.ex = exchange or _build_exchange(exchange_id, api_key, api_secret, market_type, testnet)

    async def _call(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            return await asyncio.wait_for(fn(), timeout=self.timeout_sec)

        return await self.retry.execute(attempt, f"{self.exchange_id}.{label}")

    async def get_ticker(self, symbol: str) -> Ticker:
        raw = await self._call("fetch_ticker", lambda: self.ex.fetch_ticker(symbol))
        return to_ticker(symbol, raw)

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        rows = await self._call("fetch_ohlcv", lambda: self.ex.fetch_ohlcv(symbol, timeframe=interval, limit=limit))
        return [
            Candle(symbol=symbol, interval=interval, time=int(t), open=float(o), high=float(h),
                   low=float(l), close=float(c), volume=float(v or 0.0))
            for t, o, h, l, c, v in rows
        ]

    async def place_order(self, request: OrderRequest) -> Order:
        params = {"clientOrderId": request.client_order_id}
        raw = await self._call(
            "create_order",
            lambda: self.ex.create_order(
                request.symbol, request.type, request.side, request.quantity, request.price, params
            ),
        )
        order = to_order(raw, fallback=request)
        log.info(f"Live order placed | sym={order.symbol} side={order.side} qty={order.quantity:.8f} status={order.status} oid={order.order_id}")
        return order

    async def cancel_order(self, order_id: str, symbol: Optional[str] = None) -> None:
        await self._call("cancel_order", lambda: self.ex.cancel_order(order_id, symbol))

    async def get_order(self, order_id: str, symbol: Optional[str] = None) -> Order:
        raw = await self._call("fetch_order", lambda: self.ex.fetch_order(order_id, symbol))
        return to_order(raw)

    async def list_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        rows = await self._call("fetch_open_orders", lambda: self.ex.fetch_open_orders(symbol))
        return [to_order(r) for r in rows]

    async def get_balances(self) -> List[Balance]:
        raw = await self._call("fetch_balance", lambda: self.ex.fetch_balance())
        out: List[Balance] = []
        for asset, bal in raw.items():
            if asset in ("info", "free", "used", "total", "timestamp", "datetime") or not isinstance(bal, dict):
                continue
            free = _f(bal.get("free"))
            locked = _f(bal.get("used"))
            if free or locked:
                out.append(Balance(asset=str(asset), free=free, locked=locked))
        return out

    async def close(self) -> None:
        await self.ex.close()
