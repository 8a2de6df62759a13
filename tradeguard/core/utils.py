from __future__ import annotations

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def normalize_symbol(symbol: str) -> str:
    """
    Map common symbol spellings to the ccxt unified form.
    Examples:
    - 'BTC-USD'   -> 'BTC/USD'
    - 'eth/usdt'  -> 'ETH/USDT'
    - 'BTC/USDT:USDT' -> 'BTC/USDT:USDT' (unchanged)
    """
    s = str(symbol or "").strip().upper()
    if "/" not in s and "-" in s:
        s = s.replace("-", "/", 1)
    return s
