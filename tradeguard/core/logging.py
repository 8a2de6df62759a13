from __future__ import annotations

import os
from pathlib import Path

from loguru import logger as _logger


def _env_flag(name: str) -> bool:
    return str(os.getenv(name, "0")).lower() in {"1", "true", "yes"}


def setup_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    Path(log_dir).mkdir(parents=True, exist_ok=True)

    # Allow env override for log level (e.g., DEBUG)
    level = str(os.getenv("TRADEGUARD_LOG_LEVEL", level)).upper()

    _logger.remove()
    if not _env_flag("TRADEGUARD_DISABLE_CONSOLE_LOG"):
        _logger.add(
            sink=lambda msg: print(msg, end=""),
            level=level,
            colorize=True,
            backtrace=False,
            diagnose=False,
        )
    _logger.add(
        Path(log_dir) / "tradeguard.log",
        rotation="10 MB",
        retention=10,
        level=level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}",
    )

    # Kill switch transitions and order submissions, one JSON object per line
    if _env_flag("TRADEGUARD_AUDIT_LOG"):
        _logger.add(
            Path(log_dir) / "audit.log",
            rotation="10 MB",
            retention=30,
            level="INFO",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            filter=lambda record: record["extra"].get("component") == "audit",
            serialize=True,
        )


def get_logger() -> _logger.__class__:
    return _logger


def get_audit_logger() -> _logger.__class__:
    """Return a logger bound for the audit trail. Only written to audit.log when enabled."""
    return _logger.bind(component="audit")
