from __future__ import annotations

from conftest import FakeClock, T0, make_ticker

from tradeguard.broker.kill_switch import KillSwitch
from tradeguard.core.config import AppConfig
from tradeguard.core.types import AccountSnapshot, Position, Signal
from tradeguard.risk.engine import RiskEngine

SYM = "BTC/USDT"


def _evaluate(cfg=None, signal=None, snapshot=None, ticker=None, now=T0, kill_switch=None):
    engine = RiskEngine(cfg or AppConfig())
    return engine.evaluate(
        signal=signal or Signal("BUY", 0.5),
        symbol=SYM,
        snapshot=snapshot or AccountSnapshot(cash_usd=10000),
        ticker=ticker or make_ticker(),
        now_ms=now,
        kill_switch=kill_switch,
    )


def test_clean_buy_passes() -> None:
    d = _evaluate()
    assert d.allowed
    assert d.reason == "All risk checks passed"
    assert d.blocked_by is None


def test_kill_switch_blocks_first() -> None:
    cfg = AppConfig()
    ks = KillSwitch(cfg.kill_switch, clock=FakeClock())
    ks.trigger("manual")
    d = _evaluate(cfg, signal=Signal("HOLD", 0.0), kill_switch=ks)
    assert not d.allowed
    assert d.blocked_by == "kill_switch"
    assert "manual" in d.reason


def test_live_mode_requires_opt_in() -> None:
    cfg = AppConfig(general={"mode": "live"})
    assert _evaluate(cfg).blocked_by == "live_disabled"
    cfg = AppConfig(general={"mode": "live", "allow_live_trading": True})
    assert _evaluate(cfg).allowed


def test_hold_is_not_a_risk_block() -> None:
    d = _evaluate(signal=Signal("HOLD", 0.9))
    assert not d.allowed
    assert d.blocked_by is None


def test_sell_without_position() -> None:
    d = _evaluate(signal=Signal("SELL", 0.5))
    assert not d.allowed
    assert d.blocked_by is None
    assert d.reason == "No position to sell"


def test_sell_with_position_passes() -> None:
    snap = AccountSnapshot(cash_usd=10000, open_positions=[Position(SYM, 0.002, 50000, 50000)])
    assert _evaluate(signal=Signal("SELL", 0.5), snapshot=snap).allowed


def test_daily_loss() -> None:
    snap = AccountSnapshot(cash_usd=10000, realized_pnl_usd=-200)
    assert _evaluate(snapshot=snap).blocked_by == "max_daily_loss"


def test_open_positions() -> None:
    snap = AccountSnapshot(
        cash_usd=10000,
        open_positions=[Position("ETH/USDT", 1, 100, 100), Position("SOL/USDT", 1, 10, 10)],
    )
    assert _evaluate(snapshot=snap).blocked_by == "max_open_positions"


def test_full_confidence_buy_hits_position_cap() -> None:
    # sized order equals max_position_usd, and the cap is inclusive
    assert _evaluate(signal=Signal("BUY", 1.0)).blocked_by == "max_position_usd"


def test_cooldown_after_stop_out() -> None:
    snap = AccountSnapshot(cash_usd=10000, last_stop_out_at_by_symbol={SYM: T0 - 5 * 60_000})
    assert _evaluate(snapshot=snap).blocked_by == "cooldown"
    snap = AccountSnapshot(cash_usd=10000, last_stop_out_at_by_symbol={SYM: T0 - 20 * 60_000})
    assert _evaluate(snapshot=snap).allowed


def test_cooldown_uses_shared_clock_when_now_omitted(monkeypatch) -> None:
    monkeypatch.setattr("tradeguard.core.utils.now_ms", lambda: T0)
    snap = AccountSnapshot(cash_usd=10000, last_stop_out_at_by_symbol={SYM: T0 - 5 * 60_000})
    assert _evaluate(snapshot=snap, now=None).blocked_by == "cooldown"


def test_min_volume() -> None:
    cfg = AppConfig(guards={"min_volume": 1000})
    assert _evaluate(cfg, ticker=make_ticker(volume_24h=10)).blocked_by == "min_volume"
    # unknown volume never blocks
    assert _evaluate(cfg, ticker=make_ticker(volume_24h=None)).allowed


def test_spread_guard() -> None:
    d = _evaluate(ticker=make_ticker(bid=98, ask=102, last=100))
    assert d.blocked_by == "spread_guard"
    assert "400.0 bps" in d.reason


def test_degenerate_quote_blocks() -> None:
    assert _evaluate(ticker=make_ticker(bid=0, ask=0, last=0)).blocked_by == "spread_guard"


def test_slippage_guard() -> None:
    assert _evaluate(ticker=make_ticker(last=50200)).blocked_by == "slippage_guard"
