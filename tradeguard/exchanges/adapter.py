from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from tradeguard.core.types import Balance, Candle, Order, OrderRequest, Ticker


class ExchangeAdapter(ABC):
    """Generic exchange capability. Every call is async and may fail."""

    @abstractmethod
    async def get_ticker(self, symbol: str) -> Ticker: ...

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]: ...

    @abstractmethod
    async def place_order(self, request: OrderRequest) -> Order: ...

    @abstractmethod
    async def cancel_order(self, order_id: str, symbol: Optional[str] = None) -> None: ...

    @abstractmethod
    async def get_order(self, order_id: str, symbol: Optional[str] = None) -> Order: ...

    @abstractmethod
    async def list_open_orders(self, symbol: Optional[str] = None) -> List[Order]: ...

    @abstractmethod
    async def get_balances(self) -> List[Balance]: ...

    async def close(self) -> None:
        return None
