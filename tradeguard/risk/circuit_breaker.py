from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from tradeguard.core.utils import now_ms


@dataclass
class CircuitBreaker:
    """Consecutive-failure breaker for outbound exchange calls.

    Opens once ``max_consecutive_failures`` failures accumulate and closes on
    its own when no failure has been recorded for ``reset_timeout_ms``, so an
    explicit success is not required to recover. State lives in memory only.
    """

    max_consecutive_failures: int = 5
    reset_timeout_ms: int = 5 * 60 * 1000
    failure_count: int = 0
    last_failure_time: int = 0

    def is_open(self, now: Optional[int] = None) -> bool:
        now = now_ms() if now is None else now
        if self.failure_count > 0 and now - self.last_failure_time > self.reset_timeout_ms:
            self.reset()
        return self.failure_count >= self.max_consecutive_failures

    def record_failure(self, now: Optional[int] = None) -> None:
        self.failure_count += 1
        self.last_failure_time = now_ms() if now is None else now

    def record_success(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.failure_count = 0
        self.last_failure_time = 0

    def get_state(self, now: Optional[int] = None) -> Dict[str, Any]:
        is_open = self.is_open(now)
        return {
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "is_open": is_open,
        }
