from __future__ import annotations

from typing import Dict

from tradeguard.core.utils import clamp


def compute_position_usd(confidence: float, max_position_usd: float, floor_usd: float = 25.0) -> float:
    """Target notional: ``max_position_usd`` scaled by confidence in [0, 1], floored at ``floor_usd``."""
    scaled = max_position_usd * clamp(confidence, 0.0, 1.0)
    return max(floor_usd, scaled)


def compute_quantity(target_usd: float, last_price: float, min_quantity: float = 0.000001) -> float:
    return max(min_quantity, target_usd / max(last_price, 1.0))


def compute_position_usd_atr(
    account_usd: float,
    risk_percent: float,
    atr: float,
    price: float,
    atr_multiplier: float = 1.5,
) -> Dict[str, float]:
    """
    Volatility-scaled sizing: risk a fixed fraction of the account against a
    stop placed ``atr_multiplier`` ATRs away.
    risk_percent: fraction, e.g. 0.02 for 2%
    """
    if price <= 0 or atr <= 0:
        return {"position_usd": 0.0, "stop_distance": 0.0, "quantity": 0.0}
    risk_usd = account_usd * risk_percent
    stop_distance = atr * atr_multiplier
    position_usd = risk_usd / (stop_distance / price)
    return {
        "position_usd": round(position_usd, 2),
        "stop_distance": stop_distance,
        "quantity": position_usd / price,
    }
