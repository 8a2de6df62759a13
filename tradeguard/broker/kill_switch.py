from __future__ import annotations

import json
from dataclasses import replace
from typing import Callable, Dict, Optional, Protocol

from loguru import logger as log

from tradeguard.core.config import KillSwitchConfig
from tradeguard.core.logging import get_audit_logger
from tradeguard.core.metrics import Metrics
from tradeguard.core.types import KillSwitchState
from tradeguard.core.utils import now_ms
from tradeguard.monitor.storage import StorageManager

KILL_SWITCH_ROW_ID = 1

audit = get_audit_logger()


class KillSwitchRepository(Protocol):
    def load(self, state_id: int) -> Optional[KillSwitchState]: ...

    def save(self, state_id: int, state: KillSwitchState) -> None: ...


class InMemoryKillSwitchRepository:
    def __init__(self) -> None:
        self._rows: Dict[int, KillSwitchState] = {}

    def load(self, state_id: int) -> Optional[KillSwitchState]:
        row = self._rows.get(state_id)
        return None if row is None else replace(row, spread_violations=list(row.spread_violations))

    def save(self, state_id: int, state: KillSwitchState) -> None:
        self._rows[state_id] = replace(state, spread_violations=list(state.spread_violations))


class SqliteKillSwitchRepository:
    """Kill switch row in the ``kill_switch`` table; the violation window is stored as JSON."""

    def __init__(self, storage: StorageManager) -> None:
        self.storage = storage

    def load(self, state_id: int) -> Optional[KillSwitchState]:
        row = self.storage.fetchone(
            "SELECT triggered, reason, triggered_at, consecutive_losses, spread_violations, api_error_count "
            "FROM kill_switch WHERE id = ?",
            (int(state_id),),
        )
        if row is None:
            return None
        return KillSwitchState(
            triggered=bool(row[0]),
            reason=row[1],
            triggered_at=int(row[2]) if row[2] is not None else None,
            consecutive_losses=int(row[3]),
            spread_violations=[int(ts) for ts in json.loads(row[4] or "[]")],
            api_error_count=int(row[5] or 0),
        )

    def save(self, state_id: int, state: KillSwitchState) -> None:
        self.storage.execute(
            """
            INSERT INTO kill_switch (id, triggered, reason, triggered_at, consecutive_losses, spread_violations, api_error_count)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                triggered = excluded.triggered,
                reason = excluded.reason,
                triggered_at = excluded.triggered_at,
                consecutive_losses = excluded.consecutive_losses,
                spread_violations = excluded.spread_violations,
                api_error_count = excluded.api_error_count
            """,
            (
                int(state_id),
                1 if state.triggered else 0,
                state.reason,
                state.triggered_at,
                int(state.consecutive_losses),
                json.dumps(list(state.spread_violations)),
                int(state.api_error_count),
            ),
        )


class KillSwitch:
    """Halts all new trade submissions once any loss, drawdown, spread or API
    error threshold is crossed.

    Two states: armed and triggered. Triggered is terminal until ``reset()``;
    the first trigger's reason and time are kept, later triggers are no-ops.
    Mutators are synchronous and assume a single writer. Every state change
    calls the persist hook installed with ``set_persist_fn`` (typically
    ``lambda: ks.persist(repo)``) so a restart cannot clear a halt.
    """

    def __init__(
        self,
        cfg: KillSwitchConfig,
        metrics: Optional[Metrics] = None,
        alerter=None,
        clock: Callable[[], int] = now_ms,
        state_id: int = KILL_SWITCH_ROW_ID,
    ) -> None:
        self.cfg = cfg
        self.metrics = metrics
        self.alerter = alerter
        self.clock = clock
        self.state_id = state_id
        self._state = KillSwitchState()
        self._persist_fn: Optional[Callable[[], None]] = None

    # --- durability ---
    def init(self, repo: KillSwitchRepository) -> None:
        """Hydrate from ``repo`` or create the default armed row."""
        loaded = repo.load(self.state_id)
        if loaded is None:
            self._state = KillSwitchState()
            repo.save(self.state_id, self._state)
        else:
            self._state = loaded
        if self._state.triggered:
            log.warning(f"Kill switch is active from previous session | reason={self._state.reason}")

    def persist(self, repo: KillSwitchRepository) -> None:
        repo.save(self.state_id, self._state)

    def set_persist_fn(self, fn: Optional[Callable[[], None]]) -> None:
        self._persist_fn = fn

    def _emit_persist(self) -> None:
        if self._persist_fn is not None:
            self._persist_fn()

    # --- queries ---
    def is_triggered(self) -> bool:
        return self._state.triggered

    def get_state(self) -> KillSwitchState:
        return replace(self._state, spread_violations=list(self._state.spread_violations))

    # --- transitions ---
    def trigger(self, reason: str) -> None:
        if self._state.triggered:
            return
        self._state.triggered = True
        self._state.reason = reason
        self._state.triggered_at = self.clock()
        log.error(f"KILL SWITCH TRIGGERED | reason={reason}")
        audit.info({"event": "kill_switch.triggered", "reason": reason, "at": self._state.triggered_at})
        if self.metrics is not None:
            self.metrics.increment("kill_switch.triggered")
        self._emit_persist()
        if self.alerter is not None:
            self.alerter.notify("Kill switch triggered", f"Trading halted: {reason}. Manual reset required.")

    def reset(self) -> None:
        self._state = KillSwitchState()
        log.info("Kill switch reset")
        audit.info({"event": "kill_switch.reset", "at": self.clock()})
        if self.metrics is not None:
            self.metrics.increment("kill_switch.reset")
        self._emit_persist()

    def record_trade_result(self, won: bool) -> None:
        if won:
            self._state.consecutive_losses = 0
        else:
            self._state.consecutive_losses += 1
        # persist the counter before a possible trip so the row is never behind
        self._emit_persist()
        if not won and self._state.consecutive_losses >= self.cfg.max_consecutive_losses:
            self.trigger(f"{self._state.consecutive_losses} consecutive losses")

    def check_drawdown(self, current_equity: float, peak_equity: float) -> None:
        if peak_equity <= 0:
            return
        drawdown_pct = (peak_equity - current_equity) / peak_equity * 100.0
        if drawdown_pct >= self.cfg.max_drawdown_pct:
            self.trigger(f"Drawdown {drawdown_pct:.2f}% exceeds {self.cfg.max_drawdown_pct}% threshold")

    def record_spread_violation(self) -> None:
        now = self.clock()
        window_ms = self.cfg.spread_violations_window_min * 60_000
        self._state.spread_violations.append(now)
        self._state.spread_violations = [ts for ts in self._state.spread_violations if now - ts < window_ms]
        self._emit_persist()
        count = len(self._state.spread_violations)
        if count >= self.cfg.spread_violations_limit:
            self.trigger(
                f"{count} spread/slippage violations in {self.cfg.spread_violations_window_min:g} minutes"
            )

    def recent_spread_violations(self) -> int:
        """Violations inside the trailing window, pruned as of now."""
        now = self.clock()
        window_ms = self.cfg.spread_violations_window_min * 60_000
        return sum(1 for ts in self._state.spread_violations if now - ts < window_ms)

    def check_api_errors(self, error_count: int) -> None:
        if error_count != self._state.api_error_count:
            self._state.api_error_count = int(error_count)
            self._emit_persist()
        if error_count >= self.cfg.api_error_threshold:
            self.trigger(f"API error count {error_count} exceeds threshold {self.cfg.api_error_threshold}")
