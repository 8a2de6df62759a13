from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from loguru import logger as log

from tradeguard.alerts.base import Alerter, LogAlerter
from tradeguard.broker.kill_switch import KillSwitch
from tradeguard.broker.order_manager import OrderManager
from tradeguard.core.config import AppConfig
from tradeguard.core.metrics import Metrics
from tradeguard.core.types import AccountSnapshot, Anomaly, Candle, Order, RiskDecision, Signal, Ticker
from tradeguard.core.utils import now_ms
from tradeguard.data.anomaly import AnomalyDetector
from tradeguard.exchanges.adapter import ExchangeAdapter
from tradeguard.monitor.storage import StorageManager
from tradeguard.risk.engine import RiskEngine
from tradeguard.risk.guards import compute_spread_bps, estimate_slippage_bps


class SignalSource(Protocol):
    def generate(self, symbol: str, candles: Sequence[Candle], ticker: Ticker) -> Signal: ...


@dataclass
class CycleResult:
    symbol: str
    signal: Signal
    decision: RiskDecision
    order: Optional[Order] = None
    anomalies: List[Anomaly] = field(default_factory=list)


class TradingLoop:
    """One risk-checked evaluation per market tick per symbol.

    Cycles for the same symbol are serialized by a per-symbol lock. Exchange
    and persistence errors propagate out of ``run_cycle``; ``run_forever``
    owns logging and alerting for them and moves on to the next tick.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        exchange: ExchangeAdapter,
        signal_source: SignalSource,
        snapshot_provider: Callable[[], AccountSnapshot],
        risk_engine: RiskEngine,
        order_manager: OrderManager,
        kill_switch: KillSwitch,
        anomaly_detector: AnomalyDetector,
        metrics: Metrics,
        alerter: Optional[Alerter] = None,
        storage: Optional[StorageManager] = None,
    ) -> None:
        self.cfg = cfg
        self.exchange = exchange
        self.signal_source = signal_source
        self.snapshot_provider = snapshot_provider
        self.risk_engine = risk_engine
        self.order_manager = order_manager
        self.kill_switch = kill_switch
        self.anomaly_detector = anomaly_detector
        self.metrics = metrics
        self.alerter = alerter or LogAlerter()
        self.storage = storage
        self.peak_equity = 0.0
        self._locks: Dict[str, asyncio.Lock] = {}
        self._stopped = asyncio.Event()

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[symbol] = lock
        return lock

    async def run_cycle(self, symbol: str, *, now: Optional[int] = None, idempotency_key: Optional[str] = None) -> CycleResult:
        async with self._lock_for(symbol):
            return await self._cycle(symbol, now_ms() if now is None else now, idempotency_key)

    async def _cycle(self, symbol: str, now: int, idempotency_key: Optional[str]) -> CycleResult:
        ticker = await self.exchange.get_ticker(symbol)
        candles = await self.exchange.get_candles(symbol, self.cfg.general.timeframe, self.cfg.general.candle_limit)

        anomalies = self.anomaly_detector.check(candles, ticker)
        for a in anomalies:
            log.warning(f"Anomaly | sym={symbol} type={a.type} severity={a.severity} {a.message}")
            self.metrics.increment(f"anomaly.{a.type}")
            if a.severity == "high":
                self.alerter.notify(f"{symbol} {a.type}", a.message)

        spread_bps = compute_spread_bps(ticker)
        slippage_bps = estimate_slippage_bps(ticker)
        self.metrics.gauge(f"risk.spread_bps.{symbol}", spread_bps if spread_bps != float("inf") else -1.0)
        if spread_bps > self.cfg.guards.max_spread_bps or slippage_bps > self.cfg.guards.max_slippage_bps:
            self.kill_switch.record_spread_violation()

        # Held positions are valued at this tick before any gate reads equity
        self.order_manager.broker.mark_to_market(symbol, ticker.last)
        snapshot = self.snapshot_provider()
        equity = snapshot.equity()
        self.peak_equity = max(self.peak_equity, equity)
        self.kill_switch.check_drawdown(equity, self.peak_equity)
        self.metrics.gauge("account.equity", equity)

        signal = self.signal_source.generate(symbol, candles, ticker)
        decision = self.risk_engine.evaluate(
            signal=signal,
            symbol=symbol,
            snapshot=snapshot,
            ticker=ticker,
            now_ms=now,
            kill_switch=self.kill_switch,
        )
        self.metrics.gauge("kill_switch.active", 1.0 if self.kill_switch.is_triggered() else 0.0)
        result = CycleResult(symbol=symbol, signal=signal, decision=decision, anomalies=anomalies)
        if not decision.allowed:
            if decision.blocked_by:
                log.info(f"Signal blocked | sym={symbol} action={signal.action} by={decision.blocked_by} reason={decision.reason}")
                self.metrics.increment(f"risk.blocked.{decision.blocked_by}")
            return result

        submission = await self.order_manager.submit(
            symbol=symbol, signal=signal, ticker=ticker, idempotency_key=idempotency_key
        )
        if submission is None:
            return result
        order = submission.order
        result.order = order
        # A replayed key returns the earlier order; its outcome was already counted
        closed = order.side == "sell" and order.status == "filled" and order.realized_pnl is not None
        if closed and not submission.idempotent_hit:
            self.record_trade_outcome(symbol, order.realized_pnl, now=now)
        return result

    def record_trade_outcome(self, symbol: str, pnl_usd: float, *, now: Optional[int] = None) -> None:
        won = pnl_usd > 0
        log.info(f"Trade outcome | sym={symbol} pnl={pnl_usd:.2f} won={won}")
        if self.storage is not None:
            self.storage.record_trade(timestamp=now_ms() if now is None else now, symbol=symbol, pnl=pnl_usd)
        self.kill_switch.record_trade_result(won)
        self.metrics.increment("trades.won" if won else "trades.lost")

    def stop(self) -> None:
        self._stopped.set()

    async def run_forever(self) -> None:
        interval = self.cfg.general.poll_interval_sec
        log.info(f"Trading loop started | mode={self.cfg.general.mode} symbols={self.cfg.general.symbols}")
        while not self._stopped.is_set():
            for symbol in self.cfg.general.symbols:
                try:
                    await self.run_cycle(symbol)
                except Exception as exc:
                    log.exception(f"Cycle failed | sym={symbol} error={exc}")
                    self.metrics.increment("loop.cycle_error")
                    self.alerter.notify(f"{symbol} cycle failed", str(exc))
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
        log.info("Trading loop stopped")
