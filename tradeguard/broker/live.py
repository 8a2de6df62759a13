from __future__ import annotations

from typing import Optional, Protocol

from tradeguard.core.errors import ValidationFailure
from tradeguard.core.types import Order, OrderRequest, Ticker
from tradeguard.exchanges.adapter import ExchangeAdapter


class Broker(Protocol):
    async def place(self, request: OrderRequest, ticker: Ticker) -> Order: ...

    def mark_to_market(self, symbol: str, price: float) -> None: ...


class LiveBroker:
    """Real dispatch. Only ``placeOrder`` of the exchange capability is used."""

    def __init__(self, exchange: ExchangeAdapter) -> None:
        self.exchange = exchange

    async def place(self, request: OrderRequest, ticker: Optional[Ticker] = None) -> Order:
        return await self.exchange.place_order(request)

    def mark_to_market(self, symbol: str, price: float) -> None:
        # The exchange values live positions itself
        return None


def make_broker(mode: str, *, paper=None, exchange: Optional[ExchangeAdapter] = None) -> Broker:
    """Pick the execution variant once, at construction time."""
    if mode == "paper":
        if paper is None:
            raise ValidationFailure("paper mode requires a PaperBroker")
        return paper
    if mode == "live":
        if exchange is None:
            raise ValidationFailure("live mode requires an exchange adapter")
        return LiveBroker(exchange)
    raise ValidationFailure(f"unknown run mode: {mode!r}")
