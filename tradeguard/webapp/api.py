from __future__ import annotations

from dataclasses import asdict

from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger as log

from tradeguard.broker.kill_switch import KillSwitch
from tradeguard.core.metrics import PrometheusMetrics

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def create_app(metrics: PrometheusMetrics, kill_switch: KillSwitch) -> FastAPI:
    app = FastAPI(title="TradeGuard")

    @app.get("/metrics")
    async def get_metrics():
        return PlainTextResponse(metrics.render(), media_type=PROMETHEUS_CONTENT_TYPE)

    @app.get("/health")
    async def health():
        return JSONResponse({"ok": True, "kill_switch_triggered": kill_switch.is_triggered()})

    @app.get("/api/kill-switch")
    async def get_kill_switch():
        return JSONResponse(asdict(kill_switch.get_state()))

    @app.post("/api/kill-switch/reset")
    async def reset_kill_switch():
        log.warning("Kill switch reset requested over HTTP")
        kill_switch.reset()
        return JSONResponse(asdict(kill_switch.get_state()))

    return app
