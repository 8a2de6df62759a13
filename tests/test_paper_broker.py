from __future__ import annotations

import asyncio

import pytest
from conftest import make_ticker

from tradeguard.broker.paper import PaperBroker
from tradeguard.core.types import OrderRequest

SYM = "BTC/USDT"
TICKER = make_ticker(bid=99.9, ask=100.1, last=100.0)


def _req(side="buy", qty=1.0, type="market", price=None, coid="c1") -> OrderRequest:
    return OrderRequest(symbol=SYM, side=side, type=type, quantity=qty, client_order_id=coid, price=price)


def test_market_buy_fills_at_mid_plus_slippage() -> None:
    pb = PaperBroker(slippage_bps=20, fee_bps=10, starting_cash=10000)
    order = asyncio.run(pb.place(_req(), TICKER))
    assert order.status == "filled"
    assert order.filled_quantity == 1.0
    assert order.avg_fill_price == pytest.approx(100.2)
    assert pb.portfolio.cash == pytest.approx(10000 - 100.2 - 0.1002)
    assert pb.portfolio.positions[SYM].avg_entry_price == pytest.approx(100.2)


def test_round_trip_realizes_pnl() -> None:
    pb = PaperBroker(slippage_bps=20, fee_bps=10)

    async def scenario():
        await pb.place(_req("buy"), TICKER)
        return await pb.place(_req("sell", coid="c2"), TICKER)

    sell = asyncio.run(scenario())
    assert sell.avg_fill_price == pytest.approx(99.8)
    assert sell.realized_pnl == pytest.approx((99.8 - 100.2) - 0.0998)
    assert SYM not in pb.portfolio.positions
    assert pb.snapshot().realized_pnl_usd == pytest.approx(sell.realized_pnl)


def test_rejections() -> None:
    pb = PaperBroker(starting_cash=50)
    buy = asyncio.run(pb.place(_req("buy"), TICKER))
    assert buy.status == "rejected" and "insufficient cash" in buy.reason
    sell = asyncio.run(pb.place(_req("sell"), TICKER))
    assert sell.status == "rejected" and "insufficient position" in sell.reason
    assert pb.portfolio.cash == 50


def test_limit_orders() -> None:
    pb = PaperBroker()
    resting = asyncio.run(pb.place(_req(type="limit", price=99.0), TICKER))
    assert resting.status == "pending"
    assert pb.portfolio.positions == {}
    crossing = asyncio.run(pb.place(_req(type="limit", price=101.0, coid="c2"), TICKER))
    assert crossing.status == "filled"
    assert crossing.avg_fill_price == 101.0


def test_slippage_is_capped() -> None:
    pb = PaperBroker(slippage_bps=1000, fee_bps=0)
    order = asyncio.run(pb.place(_req(), TICKER))
    assert order.avg_fill_price == pytest.approx(102.0)


def test_snapshot_marks_positions() -> None:
    pb = PaperBroker(slippage_bps=0, fee_bps=0, starting_cash=1000)
    asyncio.run(pb.place(_req(qty=2.0), TICKER))
    pb.mark_to_market(SYM, 110.0)
    snap = pb.snapshot({SYM: 123})
    assert snap.cash_usd == pytest.approx(800.0)
    assert snap.unrealized_pnl_usd == pytest.approx(20.0)
    assert snap.equity() == pytest.approx(1020.0)
    assert snap.last_stop_out_at_by_symbol == {SYM: 123}


def test_buy_and_rejected_orders_carry_no_realized_pnl() -> None:
    pb = PaperBroker(starting_cash=150)
    buy = asyncio.run(pb.place(_req("buy"), TICKER))
    assert buy.status == "filled" and buy.realized_pnl is None
    rejected = asyncio.run(pb.place(_req("buy", coid="c2"), TICKER))
    assert rejected.status == "rejected" and rejected.realized_pnl is None


def test_mark_to_market_ignores_non_positive_price() -> None:
    pb = PaperBroker(slippage_bps=0, fee_bps=0, starting_cash=1000)
    asyncio.run(pb.place(_req(), TICKER))
    pb.mark_to_market(SYM, 0.0)
    assert pb.portfolio.positions[SYM].market_price == pytest.approx(100.0)
    pb.mark_to_market("ETH/USDT", 50.0)
    assert "ETH/USDT" not in pb.portfolio.positions
