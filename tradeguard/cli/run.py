from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import signal
from dataclasses import asdict, dataclass
from typing import Optional

from tradeguard.alerts.base import LogAlerter
from tradeguard.broker.kill_switch import KillSwitch, SqliteKillSwitchRepository
from tradeguard.broker.live import make_broker
from tradeguard.broker.order_manager import OrderManager
from tradeguard.broker.order_store import SqliteOrderStore
from tradeguard.broker.paper import PaperBroker
from tradeguard.broker.retry import RetryExecutor
from tradeguard.core.config import AppConfig
from tradeguard.core.env import exchange_credentials, load_local_environment
from tradeguard.core.logging import get_logger, setup_logging
from tradeguard.core.metrics import PrometheusMetrics
from tradeguard.core.types import AccountSnapshot
from tradeguard.data.anomaly import AnomalyDetector
from tradeguard.engine.loop import SignalSource, TradingLoop
from tradeguard.exchanges.ccxt_adapter import CcxtExchangeAdapter
from tradeguard.monitor.storage import StorageManager
from tradeguard.risk.circuit_breaker import CircuitBreaker
from tradeguard.risk.engine import RiskEngine


@dataclass
class SafetyCore:
    storage: StorageManager
    metrics: PrometheusMetrics
    kill_switch: KillSwitch


def open_safety_core(cfg: AppConfig, alerter=None) -> SafetyCore:
    """Open storage and hydrate the kill switch, wiring its persist hook."""
    storage = StorageManager(db_path=cfg.resolved_db_path())
    metrics = PrometheusMetrics(prefix=cfg.metrics.prefix)
    kill_switch = KillSwitch(cfg.kill_switch, metrics=metrics, alerter=alerter)
    repo = SqliteKillSwitchRepository(storage)
    kill_switch.init(repo)
    kill_switch.set_persist_fn(lambda: kill_switch.persist(repo))
    return SafetyCore(storage=storage, metrics=metrics, kill_switch=kill_switch)


def load_signal_source(path: str) -> SignalSource:
    """Resolve ``package.module:attr``; a class is instantiated without arguments."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise SystemExit(f"--signal-source must look like 'package.module:Name', got {path!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    return obj() if isinstance(obj, type) else obj


def build_loop(cfg: AppConfig, core: SafetyCore, signal_source: SignalSource) -> TradingLoop:
    alerter = core.kill_switch.alerter or LogAlerter()
    breaker = CircuitBreaker(
        max_consecutive_failures=cfg.circuit_breaker.max_consecutive_failures,
        reset_timeout_ms=cfg.circuit_breaker.reset_timeout_ms,
    )
    retry = RetryExecutor(
        attempts=cfg.retry.attempts,
        base_delay_ms=cfg.retry.base_delay_ms,
        circuit_breaker=breaker,
        metrics=core.metrics,
        kill_switch=core.kill_switch,
    )
    api_key, api_secret = exchange_credentials()
    exchange = CcxtExchangeAdapter(
        cfg.general.exchange_id,
        retry,
        api_key=api_key,
        api_secret=api_secret,
        timeout_sec=cfg.retry.timeout_sec,
    )
    paper: Optional[PaperBroker] = None
    if cfg.general.mode == "paper":
        paper = PaperBroker(
            slippage_bps=cfg.broker.slippage_bps,
            fee_bps=cfg.broker.fee_bps,
            starting_cash=cfg.broker.starting_cash,
        )
    broker = make_broker(cfg.general.mode, paper=paper, exchange=exchange)
    order_manager = OrderManager(cfg, SqliteOrderStore(core.storage), broker, core.metrics)

    if paper is not None:
        snapshot_provider = paper.snapshot
    else:
        # Live account state is reconciled outside the core; start from an empty view.
        snapshot_provider = lambda: AccountSnapshot(cash_usd=cfg.broker.starting_cash)  # noqa: E731

    return TradingLoop(
        cfg,
        exchange=exchange,
        signal_source=signal_source,
        snapshot_provider=snapshot_provider,
        risk_engine=RiskEngine(cfg),
        order_manager=order_manager,
        kill_switch=core.kill_switch,
        anomaly_detector=AnomalyDetector(cfg.anomaly),
        metrics=core.metrics,
        alerter=alerter,
        storage=core.storage,
    )


async def _serve(cfg: AppConfig, core: SafetyCore, loop: TradingLoop) -> None:
    import uvicorn

    from tradeguard.webapp.api import create_app

    server = uvicorn.Server(
        uvicorn.Config(create_app(core.metrics, core.kill_switch), host="0.0.0.0", port=cfg.metrics.http_port, log_level="warning")
    )
    server_task = asyncio.create_task(server.serve())

    aio_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            aio_loop.add_signal_handler(sig, loop.stop)
        except NotImplementedError:
            pass
    try:
        await loop.run_forever()
    finally:
        server.should_exit = True
        await server_task
        await loop.exchange.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="TradeGuard safety and execution core")
    parser.add_argument("--config", type=str, required=True, help="Path to YAML config")
    parser.add_argument("--signal-source", type=str, help="Signal producer as 'package.module:Name'")
    parser.add_argument("--status", action="store_true", help="Print kill switch state and exit")
    parser.add_argument("--reset-kill-switch", action="store_true", help="Operator reset of a triggered kill switch")
    parser.add_argument("--log-dir", type=str, default="logs")
    args = parser.parse_args()

    load_local_environment()
    cfg = AppConfig.load(args.config)
    setup_logging(log_dir=args.log_dir, level="INFO")
    log = get_logger()

    core = open_safety_core(cfg, alerter=LogAlerter())
    try:
        if args.reset_kill_switch:
            was = core.kill_switch.get_state()
            core.kill_switch.reset()
            log.warning(f"Kill switch reset by operator | previous_reason={was.reason}")
        if args.status or args.reset_kill_switch:
            print(json.dumps(asdict(core.kill_switch.get_state()), indent=2))
            return
        if not args.signal_source:
            parser.error("--signal-source is required to run the trading loop")
        loop = build_loop(cfg, core, load_signal_source(args.signal_source))
        asyncio.run(_serve(cfg, core, loop))
    finally:
        core.storage.close()


if __name__ == "__main__":
    main()
