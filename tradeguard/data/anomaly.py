from __future__ import annotations

from typing import Callable, List, Optional, Sequence

import numpy as np

from tradeguard.core.config import AnomalyConfig
from tradeguard.core.types import Anomaly, Candle, Ticker
from tradeguard.core.utils import now_ms
from tradeguard.risk.guards import compute_spread_bps


class AnomalyDetector:
    """Flags unusual market behaviour. Alerts only, never trades.

    Candle checks need at least ``min_candles`` bars and return nothing below
    that, so a cold start cannot produce false positives.
    """

    def __init__(self, cfg: Optional[AnomalyConfig] = None, clock: Callable[[], int] = now_ms) -> None:
        self.cfg = cfg or AnomalyConfig()
        self.clock = clock
        self._last_candle_time = 0

    def check_candles(self, candles: Sequence[Candle]) -> List[Anomaly]:
        if len(candles) < self.cfg.min_candles:
            return []
        latest = candles[-1]
        prev = candles[-2]
        anomalies: List[Anomaly] = []

        spike = self._volume_spike(candles, latest)
        if spike:
            anomalies.append(spike)
        gap = self._price_gap(prev, latest)
        if gap:
            anomalies.append(gap)
        wick = self._wick_anomaly(latest)
        if wick:
            anomalies.append(wick)
        stale = self._stale_data(prev, latest)
        if stale:
            anomalies.append(stale)
        self._last_candle_time = latest.time
        return anomalies

    def check_ticker(self, ticker: Ticker) -> List[Anomaly]:
        spread_bps = compute_spread_bps(ticker)
        if spread_bps <= self.cfg.spread_blowout_bps:
            return []
        # a non-positive mid gives inf and is reported as a blowout too
        return [
            Anomaly(
                type="spread_blowout",
                severity="high",
                message=f"Spread blowout: {spread_bps:.0f} bps (bid ${ticker.bid:.2f}, ask ${ticker.ask:.2f})",
                value=spread_bps,
                threshold=self.cfg.spread_blowout_bps,
                timestamp=ticker.time,
            )
        ]

    def check(self, candles: Sequence[Candle], ticker: Optional[Ticker] = None) -> List[Anomaly]:
        anomalies = self.check_candles(candles)
        if ticker is not None:
            anomalies.extend(self.check_ticker(ticker))
        return anomalies

    def _volume_spike(self, candles: Sequence[Candle], latest: Candle) -> Optional[Anomaly]:
        volumes = np.asarray([c.volume for c in candles[-self.cfg.lookback:]], dtype=float)
        median_vol = float(np.median(volumes))
        if median_vol <= 0:
            return None
        ratio = latest.volume / median_vol
        threshold = self.cfg.volume_spike_threshold
        if ratio <= threshold:
            return None
        multiple = ratio / threshold
        severity = "high" if multiple >= 2.0 else "medium" if multiple >= 1.5 else "low"
        return Anomaly(
            type="volume_spike",
            severity=severity,
            message=f"Volume {ratio:.1f}x median ({latest.volume:.0f} vs median {median_vol:.0f})",
            value=ratio,
            threshold=threshold,
            timestamp=latest.time,
        )

    def _price_gap(self, prev: Candle, latest: Candle) -> Optional[Anomaly]:
        if prev.close <= 0:
            return None
        gap = abs(latest.open - prev.close) / prev.close
        if gap <= self.cfg.price_gap_threshold:
            return None
        return Anomaly(
            type="price_gap",
            severity="high" if gap > 0.05 else "medium" if gap > 0.03 else "low",
            message=f"Price gap {gap * 100:.1f}% between candles (${prev.close:.2f} -> ${latest.open:.2f})",
            value=gap,
            threshold=self.cfg.price_gap_threshold,
            timestamp=latest.time,
        )

    def _wick_anomaly(self, latest: Candle) -> Optional[Anomaly]:
        body = abs(latest.close - latest.open)
        if body <= 0:
            return None
        total_wick = (latest.high - latest.low) - body
        ratio = total_wick / body
        if ratio <= self.cfg.wick_anomaly_ratio:
            return None
        return Anomaly(
            type="wick_anomaly",
            severity="high" if ratio > 10 else "medium",
            message=f"Extreme wicks: wick/body ratio {ratio:.1f}x (possible manipulation or flash crash)",
            value=ratio,
            threshold=self.cfg.wick_anomaly_ratio,
            timestamp=latest.time,
        )

    def _stale_data(self, prev: Candle, latest: Candle) -> Optional[Anomaly]:
        if self._last_candle_time <= 0:
            return None
        interval = latest.time - prev.time
        if interval <= 0:
            return None
        now = self.clock()
        since_last = now - latest.time
        if since_last <= interval * self.cfg.stale_data_multiplier:
            return None
        return Anomaly(
            type="stale_data",
            severity="high" if since_last > interval * 5 else "medium",
            message=f"No new candle for {since_last / 60_000:.0f} min (expected every {interval / 60_000:.0f} min)",
            value=since_last / interval,
            threshold=self.cfg.stale_data_multiplier,
            timestamp=now,
        )
