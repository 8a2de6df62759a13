from __future__ import annotations

from typing import Optional

from tradeguard.core.types import AccountSnapshot


def exceeds_max_daily_loss(snapshot: AccountSnapshot, max_daily_loss_usd: float) -> bool:
    pnl = snapshot.realized_pnl_usd + snapshot.unrealized_pnl_usd
    return pnl <= -abs(max_daily_loss_usd)


def exceeds_max_open_positions(snapshot: AccountSnapshot, max_open_positions: int, symbol: str) -> bool:
    # Diversification limit only: adding to a held symbol is never blocked here,
    # per-symbol size is capped by exceeds_max_position_usd.
    if snapshot.position_for(symbol) is not None:
        return False
    return len(snapshot.open_positions) >= max_open_positions


def exceeds_max_position_usd(
    snapshot: AccountSnapshot,
    symbol: str,
    max_position_usd: float,
    current_price: Optional[float] = None,
    incoming_order_usd: float = 0.0,
) -> bool:
    position = snapshot.position_for(symbol)
    if position is None:
        return incoming_order_usd >= max_position_usd
    price = current_price if current_price is not None else position.market_price
    existing = abs(position.quantity * price)
    return existing + incoming_order_usd >= max_position_usd
