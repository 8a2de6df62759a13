from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger as log


def load_local_environment() -> None:
    """Load environment variables from a single canonical location.

    Canonical path: <project_root>/.env, which OVERRIDES already-set
    variables. Falls back to ~/.tradeguard/.env. The resolved path is
    exposed via TRADEGUARD_ENV_PATH for diagnostics.
    """
    project_root = Path(__file__).resolve().parents[2]
    root_env = project_root / ".env"
    home_env = Path.home() / ".tradeguard" / ".env"

    for candidate in (root_env, home_env):
        if candidate.exists():
            load_dotenv(dotenv_path=candidate, override=True)
            os.environ["TRADEGUARD_ENV_PATH"] = str(candidate)
            log.debug(f"Loaded environment from {candidate}")
            return

    os.environ.setdefault("TRADEGUARD_ENV_PATH", str(root_env))


def exchange_credentials() -> tuple[str, str]:
    return os.getenv("TRADEGUARD_API_KEY", ""), os.getenv("TRADEGUARD_API_SECRET", "")
