"""
Runtime configuration.

Settings are read from environment variables. Entry points call
load_dotenv() first so a local .env file can provide them.
"""

import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_DB_PATH = "data/repairx_jobs.db"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class LifecycleSettings:
    """
    Settings for the lifecycle service.

    Environment variables:
        REPAIRX_DB_PATH: SQLite file, or ":memory:" for the in-memory store
        REPAIRX_NOTIFY_WEBHOOK_URL: Notification webhook (unset = log only)
        REPAIRX_NOTIFY_MAX_ATTEMPTS: Delivery attempts per notification
        REPAIRX_NOTIFY_BASE_DELAY: Initial retry delay in seconds
        REPAIRX_NOTIFY_MAX_DELAY: Maximum retry delay in seconds
        REPAIRX_NOTIFY_TIMEOUT: Webhook request timeout in seconds
        REPAIRX_CONFLICT_RETRIES: Automatic retries on version conflicts
        LOG_LEVEL: Logging level
        REPAIRX_LOG_DIR: Directory for daily log files
    """

    db_path: str = DEFAULT_DB_PATH
    notify_webhook_url: Optional[str] = None
    notify_max_attempts: int = 3
    notify_base_delay: float = 1.0
    notify_max_delay: float = 10.0
    notify_timeout: float = 30.0
    conflict_retries: int = 3
    log_level: str = "INFO"
    log_dir: str = "logs"

    @property
    def uses_memory_store(self) -> bool:
        return self.db_path == ":memory:"

    @classmethod
    def from_env(cls) -> "LifecycleSettings":
        """Build settings from the current environment."""
        return cls(
            db_path=os.getenv("REPAIRX_DB_PATH", DEFAULT_DB_PATH),
            notify_webhook_url=os.getenv("REPAIRX_NOTIFY_WEBHOOK_URL") or None,
            notify_max_attempts=_env_int("REPAIRX_NOTIFY_MAX_ATTEMPTS", 3),
            notify_base_delay=_env_float("REPAIRX_NOTIFY_BASE_DELAY", 1.0),
            notify_max_delay=_env_float("REPAIRX_NOTIFY_MAX_DELAY", 10.0),
            notify_timeout=_env_float("REPAIRX_NOTIFY_TIMEOUT", 30.0),
            conflict_retries=_env_int("REPAIRX_CONFLICT_RETRIES", 3),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_dir=os.getenv("REPAIRX_LOG_DIR", "logs"),
        )
