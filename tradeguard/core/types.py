from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional


Side = Literal["buy", "sell"]
OrderType = Literal["market", "limit"]
OrderStatus = Literal["pending", "open", "filled", "canceled", "rejected"]
SignalAction = Literal["BUY", "SELL", "HOLD"]
Severity = Literal["low", "medium", "high"]
AnomalyType = Literal["volume_spike", "spread_blowout", "price_gap", "wick_anomaly", "stale_data"]

OPEN_STATUSES = ("pending", "open")


@dataclass
class Candle:
    symbol: str
    interval: str
    time: int  # epoch ms
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Ticker:
    symbol: str
    bid: float
    ask: float
    last: float
    time: int  # epoch ms
    volume_24h: Optional[float] = None

    @property
    def mid(self) -> float:
        return (self.ask + self.bid) / 2.0


@dataclass
class OrderRequest:
    symbol: str
    side: Side
    type: OrderType
    quantity: float
    client_order_id: str
    price: Optional[float] = None  # None for market


@dataclass
class Order:
    order_id: str
    client_order_id: str
    symbol: str
    side: Side
    type: OrderType
    quantity: float
    status: OrderStatus
    filled_quantity: float
    created_at: int
    updated_at: int
    price: Optional[float] = None
    avg_fill_price: Optional[float] = None
    reason: Optional[str] = None
    # PnL booked by a closing paper fill; the trades table is its durable record
    realized_pnl: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


@dataclass
class Balance:
    asset: str
    free: float
    locked: float


@dataclass
class Signal:
    action: SignalAction
    confidence: float
    reason: str = ""


@dataclass
class Position:
    symbol: str
    quantity: float
    avg_entry_price: float
    market_price: float


@dataclass
class AccountSnapshot:
    """Account view recomputed every evaluation cycle. Read-only to guards."""

    cash_usd: float
    realized_pnl_usd: float = 0.0
    unrealized_pnl_usd: float = 0.0
    open_positions: List[Position] = field(default_factory=list)
    last_stop_out_at_by_symbol: Dict[str, int] = field(default_factory=dict)

    def position_for(self, symbol: str) -> Optional[Position]:
        for pos in self.open_positions:
            if pos.symbol == symbol:
                return pos
        return None

    def equity(self) -> float:
        value = self.cash_usd
        for pos in self.open_positions:
            value += pos.quantity * pos.market_price
        return value


@dataclass
class RiskDecision:
    allowed: bool
    reason: str
    blocked_by: Optional[str] = None


@dataclass
class KillSwitchState:
    triggered: bool = False
    reason: Optional[str] = None
    triggered_at: Optional[int] = None
    consecutive_losses: int = 0
    spread_violations: List[int] = field(default_factory=list)  # epoch ms, oldest first
    api_error_count: int = 0


@dataclass
class Anomaly:
    type: AnomalyType
    severity: Severity
    message: str
    value: float
    threshold: float
    timestamp: int
