from __future__ import annotations

from typing import Protocol

from loguru import logger as log


class Alerter(Protocol):
    def notify(self, title: str, message: str) -> None: ...


class LogAlerter:
    """Default alerting collaborator: writes alerts to the log. Channels plug in behind the same call."""

    def notify(self, title: str, message: str) -> None:
        log.warning(f"ALERT | {title} | {message}")
