from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from loguru import logger as log

from tradeguard.core import utils
from tradeguard.core.config import AppConfig
from tradeguard.core.types import AccountSnapshot, RiskDecision, Signal, Ticker
from tradeguard.risk.guards import compute_spread_bps, estimate_slippage_bps
from tradeguard.risk.limits import exceeds_max_daily_loss, exceeds_max_open_positions, exceeds_max_position_usd
from tradeguard.risk.sizing import compute_position_usd


def _block(reason: str, blocked_by: Optional[str] = None) -> RiskDecision:
    return RiskDecision(allowed=False, reason=reason, blocked_by=blocked_by)


@dataclass
class RiskEngine:
    """Composes the pure guards into one decision, stopping at the first failure."""

    cfg: AppConfig

    def evaluate(
        self,
        *,
        signal: Signal,
        symbol: str,
        snapshot: AccountSnapshot,
        ticker: Ticker,
        now_ms: Optional[int] = None,
        kill_switch=None,
    ) -> RiskDecision:
        decision = self._evaluate(signal, symbol, snapshot, ticker, now_ms, kill_switch)
        log.debug(
            f"Risk decision | sym={symbol} action={signal.action} allowed={decision.allowed} "
            f"blocked_by={decision.blocked_by or '-'} reason={decision.reason}"
        )
        return decision

    def _evaluate(
        self,
        signal: Signal,
        symbol: str,
        snapshot: AccountSnapshot,
        ticker: Ticker,
        now_ms: Optional[int],
        kill_switch,
    ) -> RiskDecision:
        now = utils.now_ms() if now_ms is None else now_ms
        risk = self.cfg.risk
        guards = self.cfg.guards

        if kill_switch is not None and kill_switch.is_triggered():
            reason = kill_switch.get_state().reason or "kill switch triggered"
            return _block(f"Kill switch active: {reason}", "kill_switch")

        if self.cfg.general.mode == "live" and not self.cfg.general.allow_live_trading:
            return _block("Live trading disabled by config", "live_disabled")

        if signal.action == "HOLD":
            return _block("No action signal")

        if signal.action == "SELL":
            pos = snapshot.position_for(symbol)
            if pos is None or pos.quantity <= 0:
                return _block("No position to sell")

        if exceeds_max_daily_loss(snapshot, risk.max_daily_loss_usd):
            return _block("Max daily loss reached", "max_daily_loss")

        if exceeds_max_open_positions(snapshot, risk.max_open_positions, symbol):
            return _block("Max open positions reached", "max_open_positions")

        incoming_usd = (
            compute_position_usd(signal.confidence, risk.max_position_usd, risk.min_order_usd)
            if signal.action == "BUY"
            else 0.0
        )
        if exceeds_max_position_usd(snapshot, symbol, risk.max_position_usd, ticker.last, incoming_usd):
            return _block("Max position exceeded", "max_position_usd")

        stop_out_at = snapshot.last_stop_out_at_by_symbol.get(symbol)
        if stop_out_at:
            cooldown_ms = risk.cooldown_minutes * 60_000
            if now - stop_out_at < cooldown_ms:
                return _block("Cooldown active after stop-out", "cooldown")

        volume = ticker.volume_24h if ticker.volume_24h is not None else math.inf
        if volume < guards.min_volume:
            return _block("Volume below minimum guard", "min_volume")

        # inf (mid <= 0) compares greater than any limit and blocks
        spread_bps = compute_spread_bps(ticker)
        if spread_bps > guards.max_spread_bps:
            return _block(f"Spread guard blocked ({spread_bps:.1f} bps)", "spread_guard")

        slippage_bps = estimate_slippage_bps(ticker)
        if slippage_bps > guards.max_slippage_bps:
            return _block(f"Slippage guard blocked ({slippage_bps:.1f} bps)", "slippage_guard")

        return RiskDecision(allowed=True, reason="All risk checks passed")
