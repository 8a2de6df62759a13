from __future__ import annotations

import math

from tradeguard.core.types import Ticker


def compute_spread_bps(ticker: Ticker) -> float:
    """Quoted spread relative to mid, in basis points. ``inf`` when mid <= 0."""
    mid = (ticker.ask + ticker.bid) / 2.0
    if mid <= 0:
        return math.inf
    return (ticker.ask - ticker.bid) / mid * 10000.0


def estimate_slippage_bps(ticker: Ticker) -> float:
    """Distance of the last trade from mid, in basis points. ``inf`` when mid <= 0."""
    mid = (ticker.ask + ticker.bid) / 2.0
    if mid <= 0:
        return math.inf
    return abs(ticker.last - mid) / mid * 10000.0
