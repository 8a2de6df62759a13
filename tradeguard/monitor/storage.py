from __future__ import annotations

import json
import os
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional


def _expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


class StorageManager:
    """SQLite storage shared by the safety core.

    Tables:
      - orders (one row per client_order_id, never deleted)
      - kill_switch (singleton rows keyed by id)
      - trades (journal of closed-trade outcomes)

    Every write commits before returning; callers rely on that to move on to
    the next gating decision.
    """

    def __init__(self, db_path: str = "~/.tradeguard/tradeguard.db") -> None:
        env_override = os.getenv("TRADEGUARD_DB")
        raw = env_override or db_path
        self.db_path = raw if raw == ":memory:" else _expand(raw)
        if self.db_path != ":memory:":
            Path(os.path.dirname(self.db_path) or ".").mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        # FULL: a committed kill switch trip must survive power loss
        self._conn.execute("PRAGMA synchronous=FULL;")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    client_order_id TEXT PRIMARY KEY,
                    order_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    type TEXT NOT NULL,
                    quantity REAL NOT NULL,
                    price REAL,
                    status TEXT NOT NULL,
                    filled_quantity REAL NOT NULL,
                    avg_fill_price REAL,
                    reason TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kill_switch (
                    id INTEGER PRIMARY KEY,
                    triggered INTEGER NOT NULL DEFAULT 0,
                    reason TEXT,
                    triggered_at INTEGER,
                    consecutive_losses INTEGER NOT NULL DEFAULT 0,
                    spread_violations TEXT NOT NULL DEFAULT '[]',
                    api_error_count INTEGER NOT NULL DEFAULT 0
                );
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER,
                    symbol TEXT,
                    pnl REAL,
                    won INTEGER,
                    metadata TEXT
                );
                """
            )
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_order_id ON orders(order_id)")
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)")
            self._conn.execute("CREATE INDEX IF NOT EXISTS idx_trades_ts ON trades(timestamp)")

    # --- raw access for repositories ---
    def execute(self, sql: str, args: tuple = ()) -> None:
        with self._lock, self._conn:
            self._conn.execute(sql, args)

    def fetchone(self, sql: str, args: tuple = ()) -> Optional[tuple]:
        with self._lock:
            return self._conn.execute(sql, args).fetchone()

    def fetchall(self, sql: str, args: tuple = ()) -> List[tuple]:
        with self._lock:
            return self._conn.execute(sql, args).fetchall()

    # --- trade journal ---
    def record_trade(
        self,
        *,
        timestamp: int,
        symbol: str,
        pnl: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO trades (timestamp, symbol, pnl, won, metadata) VALUES (?, ?, ?, ?, ?)",
                (int(timestamp), symbol, float(pnl), 1 if pnl > 0 else 0, json.dumps(metadata or {})),
            )
            return int(cur.lastrowid or 0)

    def recent_trades(self, limit: int = 100) -> List[Dict[str, Any]]:
        rows = self.fetchall(
            "SELECT id, timestamp, symbol, pnl, won, metadata FROM trades ORDER BY id DESC LIMIT ?",
            (int(limit),),
        )
        return [
            {
                "id": int(r[0]),
                "timestamp": int(r[1]),
                "symbol": str(r[2]),
                "pnl": float(r[3]),
                "won": bool(r[4]),
                "metadata": json.loads(r[5] or "{}"),
            }
            for r in rows
        ]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
