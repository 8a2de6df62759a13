from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from tradeguard.core.types import AccountSnapshot, Order, OrderRequest, Position, Ticker
from tradeguard.core.utils import now_ms

# Cap simulated slippage at 2% whatever the configuration says
MAX_SLIPPAGE_FRACTION = 0.02


@dataclass
class Portfolio:
    cash: float
    positions: Dict[str, Position] = field(default_factory=dict)
    realized_pnl: float = 0.0

    def unrealized_pnl(self) -> float:
        return sum((p.market_price - p.avg_entry_price) * p.quantity for p in self.positions.values())


class PaperBroker:
    """Simulated execution against the current ticker.

    Market orders fill immediately at mid +/- slippage; limit orders fill at
    the limit price only when marketable and otherwise stay pending. Fills are
    booked into an in-memory portfolio so paper runs produce a real account
    snapshot (cash, positions, realized PnL).
    """

    def __init__(self, slippage_bps: float = 20.0, fee_bps: float = 10.0, starting_cash: float = 10000.0):
        self.slippage_bps = slippage_bps
        self.fee_bps = fee_bps
        self.portfolio = Portfolio(cash=starting_cash)

    def _apply_slippage(self, mid: float, side: str) -> float:
        adj = mid * min(self.slippage_bps / 10000.0, MAX_SLIPPAGE_FRACTION)
        return mid + adj if side == "buy" else mid - adj

    def _fee(self, notional: float) -> float:
        return abs(notional) * (self.fee_bps / 10000.0)

    async def place(self, request: OrderRequest, ticker: Ticker) -> Order:
        if request.type == "limit" and request.price is not None:
            if request.side == "buy" and ticker.ask > request.price:
                return self._order(request, status="pending")
            if request.side == "sell" and ticker.bid < request.price:
                return self._order(request, status="pending")
            fill_price = float(request.price)
        else:
            fill_price = self._apply_slippage(ticker.mid, request.side)

        rejection, realized = self._book_fill(request, fill_price)
        if rejection:
            return self._order(request, status="rejected", reason=rejection)
        return self._order(request, status="filled", fill_price=fill_price, realized_pnl=realized)

    def _book_fill(self, request: OrderRequest, exec_price: float) -> Tuple[Optional[str], Optional[float]]:
        """Book a fill into the portfolio. Returns (rejection reason, realized PnL of a sell)."""
        notional = exec_price * request.quantity
        fee = self._fee(notional)

        if request.side == "buy":
            cost = notional + fee
            if self.portfolio.cash < cost:
                return f"insufficient cash: need {cost:.2f}, have {self.portfolio.cash:.2f}", None
            self.portfolio.cash -= cost
            pos = self.portfolio.positions.get(request.symbol)
            if pos is None:
                self.portfolio.positions[request.symbol] = Position(
                    symbol=request.symbol, quantity=request.quantity, avg_entry_price=exec_price, market_price=exec_price
                )
            else:
                new_qty = pos.quantity + request.quantity
                pos.avg_entry_price = (pos.avg_entry_price * pos.quantity + exec_price * request.quantity) / new_qty
                pos.quantity = new_qty
                pos.market_price = exec_price
            return None, None

        pos = self.portfolio.positions.get(request.symbol)
        if pos is None or pos.quantity < request.quantity - 1e-12:
            held = pos.quantity if pos is not None else 0.0
            return f"insufficient position: sell {request.quantity:.8f}, hold {held:.8f}", None
        self.portfolio.cash += notional - fee
        realized = (exec_price - pos.avg_entry_price) * request.quantity - fee
        self.portfolio.realized_pnl += realized
        pos.quantity -= request.quantity
        pos.market_price = exec_price
        if pos.quantity <= 1e-12:
            del self.portfolio.positions[request.symbol]
        return None, realized

    def _order(
        self,
        request: OrderRequest,
        *,
        status: str,
        fill_price: Optional[float] = None,
        reason: Optional[str] = None,
        realized_pnl: Optional[float] = None,
    ) -> Order:
        ts = now_ms()
        return Order(
            order_id=f"paper-{uuid.uuid4()}",
            client_order_id=request.client_order_id,
            symbol=request.symbol,
            side=request.side,
            type=request.type,
            quantity=request.quantity,
            price=request.price,
            status=status,
            filled_quantity=request.quantity if status == "filled" else 0.0,
            avg_fill_price=fill_price,
            reason=reason,
            realized_pnl=realized_pnl,
            created_at=ts,
            updated_at=ts,
        )

    def mark_to_market(self, symbol: str, price: float) -> None:
        pos = self.portfolio.positions.get(symbol)
        if pos is not None and price > 0:
            pos.market_price = price

    def snapshot(self, last_stop_out_at_by_symbol: Optional[Dict[str, int]] = None) -> AccountSnapshot:
        return AccountSnapshot(
            cash_usd=self.portfolio.cash,
            realized_pnl_usd=self.portfolio.realized_pnl,
            unrealized_pnl_usd=self.portfolio.unrealized_pnl(),
            open_positions=[
                Position(p.symbol, p.quantity, p.avg_entry_price, p.market_price)
                for p in self.portfolio.positions.values()
            ],
            last_stop_out_at_by_symbol=dict(last_stop_out_at_by_symbol or {}),
        )
