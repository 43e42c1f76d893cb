"""
Runtime settings for the job registry.

Values come from environment variables (optionally loaded from .env,
see env.py). Every setting has a default suitable for a local SQLite file.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .database import ASYNC_JOB_GROUP

ENV_PREFIX = "JOBREGISTRY_"

DEFAULT_DATABASE_URL = "sqlite:///data/jobs.db"
DEFAULT_STALE_AFTER_MS = 1000 * 60 * 2  # 2 minutes
DEFAULT_BATCH_SIZE = 1024
DEFAULT_RETENTION_DAYS = 7


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    reclaim_group: str = ASYNC_JOB_GROUP
    stale_after_ms: int = DEFAULT_STALE_AFTER_MS
    batch_size: int = DEFAULT_BATCH_SIZE
    retention_days: int = DEFAULT_RETENTION_DAYS
    failed_retention_days: int = DEFAULT_RETENTION_DAYS
    log_level: str = "INFO"
    log_dir: Path = Path("logs")


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    key = ENV_PREFIX + name
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build settings from environment variables.

    Args:
        env: Mapping to read from (default: os.environ)

    Returns:
        Settings instance

    Raises:
        ValueError: If a numeric variable is not a positive integer
    """
    if env is None:
        env = os.environ

    return Settings(
        database_url=env.get(ENV_PREFIX + "DATABASE_URL") or DEFAULT_DATABASE_URL,
        reclaim_group=env.get(ENV_PREFIX + "RECLAIM_GROUP") or ASYNC_JOB_GROUP,
        stale_after_ms=_positive_int(env, "STALE_AFTER_MS", DEFAULT_STALE_AFTER_MS),
        batch_size=_positive_int(env, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
        retention_days=_positive_int(env, "RETENTION_DAYS", DEFAULT_RETENTION_DAYS),
        failed_retention_days=_positive_int(
            env, "FAILED_RETENTION_DAYS", DEFAULT_RETENTION_DAYS
        ),
        log_level=(env.get(ENV_PREFIX + "LOG_LEVEL") or "INFO").upper(),
        log_dir=Path(env.get(ENV_PREFIX + "LOG_DIR") or "logs"),
    )
