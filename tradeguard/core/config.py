from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal

import yaml
from pydantic import BaseModel, Field, NonNegativeFloat, PositiveFloat, PositiveInt, field_validator

from tradeguard.core.utils import normalize_symbol


class GeneralConfig(BaseModel):
    mode: Literal["paper", "live"] = "paper"
    allow_live_trading: bool = False
    exchange_id: str = "binance"  # any ccxt exchange id, e.g. "binance", "bybit", "coinbase"
    symbols: List[str] = Field(default_factory=lambda: ["BTC/USDT", "ETH/USDT"])
    timeframe: str = "1h"
    poll_interval_sec: PositiveFloat = 5.0
    candle_limit: PositiveInt = 200

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, v: List[str]) -> List[str]:
        return [normalize_symbol(s) for s in v]


class RiskConfig(BaseModel):
    max_daily_loss_usd: PositiveFloat = 150.0
    max_position_usd: PositiveFloat = 250.0
    max_open_positions: PositiveInt = 2
    cooldown_minutes: int = Field(default=15, ge=0)
    min_order_usd: NonNegativeFloat = 25.0  # floor for confidence-scaled sizing
    min_quantity: PositiveFloat = 0.000001


class GuardsConfig(BaseModel):
    max_spread_bps: PositiveFloat = 25.0
    max_slippage_bps: PositiveFloat = 20.0
    min_volume: NonNegativeFloat = 0.0


class KillSwitchConfig(BaseModel):
    max_drawdown_pct: PositiveFloat = 5.0
    max_consecutive_losses: PositiveInt = 3
    api_error_threshold: PositiveInt = 5
    spread_violations_limit: PositiveInt = 3
    spread_violations_window_min: PositiveFloat = 10.0


class CircuitBreakerConfig(BaseModel):
    max_consecutive_failures: PositiveInt = 5
    reset_timeout_ms: PositiveInt = 5 * 60 * 1000


class RetryConfig(BaseModel):
    attempts: PositiveInt = 3
    base_delay_ms: int = Field(default=200, ge=0)  # linear: base * attempt
    timeout_sec: PositiveFloat = 10.0


class AnomalyConfig(BaseModel):
    min_candles: int = Field(default=20, ge=2)
    lookback: PositiveInt = 50
    volume_spike_threshold: PositiveFloat = 3.0  # current / median volume
    price_gap_threshold: PositiveFloat = 0.02  # |open - prev close| / prev close
    wick_anomaly_ratio: PositiveFloat = 5.0  # wick length / body length
    spread_blowout_bps: PositiveFloat = 50.0
    stale_data_multiplier: PositiveFloat = 3.0


class BrokerConfig(BaseModel):
    # paper fills only
    slippage_bps: NonNegativeFloat = 20.0
    fee_bps: NonNegativeFloat = 10.0
    starting_cash: PositiveFloat = 10000.0


class StorageConfig(BaseModel):
    db_path: str = "~/.tradeguard/tradeguard.db"


class MetricsConfig(BaseModel):
    prefix: str = "tradeguard"
    http_port: PositiveInt = 8080


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    guards: GuardsConfig = Field(default_factory=GuardsConfig)
    kill_switch: KillSwitchConfig = Field(default_factory=KillSwitchConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @property
    def mode(self) -> str:
        return self.general.mode

    def resolved_db_path(self) -> str:
        path = os.getenv("TRADEGUARD_DB") or self.storage.db_path
        return os.path.expandvars(os.path.expanduser(path))

    @staticmethod
    def load(path: str | Path) -> "AppConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return AppConfig(**data)
