from __future__ import annotations

from conftest import FakeClock
from fastapi.testclient import TestClient

from tradeguard.broker.kill_switch import KillSwitch
from tradeguard.core.config import KillSwitchConfig
from tradeguard.core.metrics import PrometheusMetrics
from tradeguard.webapp.api import create_app


def _client():
    metrics = PrometheusMetrics()
    ks = KillSwitch(KillSwitchConfig(), metrics=metrics, clock=FakeClock())
    return TestClient(create_app(metrics, ks)), ks


def test_metrics_endpoint() -> None:
    client, ks = _client()
    ks.trigger("manual")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "tradeguard_kill_switch_triggered_total 1.0" in resp.text


def test_kill_switch_status_and_reset() -> None:
    client, ks = _client()
    ks.trigger("drawdown")
    assert client.get("/health").json() == {"ok": True, "kill_switch_triggered": True}
    body = client.get("/api/kill-switch").json()
    assert body["triggered"] is True and body["reason"] == "drawdown"
    body = client.post("/api/kill-switch/reset").json()
    assert body["triggered"] is False
    assert not ks.is_triggered()
