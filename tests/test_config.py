from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

from tradeguard.core.config import AppConfig

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_defaults() -> None:
    cfg = AppConfig()
    assert cfg.mode == "paper"
    assert cfg.risk.max_position_usd == 250
    assert cfg.guards.max_spread_bps == 25
    assert cfg.kill_switch.max_consecutive_losses == 3
    assert cfg.circuit_breaker.reset_timeout_ms == 300_000
    assert cfg.anomaly.min_candles == 20


def test_load_yaml_and_normalize_symbols() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "cfg.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("general:\n  symbols: ['btc-usdt', 'ETH/USDT']\nrisk:\n  max_position_usd: 500\n")
        cfg = AppConfig.load(path)
    assert cfg.general.symbols == ["BTC/USDT", "ETH/USDT"]
    assert cfg.risk.max_position_usd == 500
    assert cfg.risk.max_daily_loss_usd == 150


def test_empty_yaml_gives_defaults() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "empty.yaml")
        Path(path).write_text("", encoding="utf-8")
        assert AppConfig.load(path) == AppConfig()


def test_shipped_paper_config_loads() -> None:
    cfg = AppConfig.load(REPO_ROOT / "configs" / "paper.yaml")
    assert cfg.mode == "paper"
    assert not cfg.general.allow_live_trading


def test_rejects_invalid_values() -> None:
    with pytest.raises(ValidationError):
        AppConfig(general={"mode": "yolo"})
    with pytest.raises(ValidationError):
        AppConfig(risk={"max_position_usd": -1})


def test_db_path_env_override(monkeypatch) -> None:
    cfg = AppConfig(storage={"db_path": "/tmp/a.db"})
    assert cfg.resolved_db_path() == "/tmp/a.db"
    monkeypatch.setenv("TRADEGUARD_DB", "/tmp/b.db")
    assert cfg.resolved_db_path() == "/tmp/b.db"
