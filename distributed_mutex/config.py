# distributed_mutex/config.py

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from distributed_mutex.core.mutex import (
    DEFAULT_ACQUIRE_TIMEOUT,
    DEFAULT_MAX_RETRY_INTERVAL,
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_VALIDITY,
)


def env_bool(name: str, default: bool = False) -> bool:
    """
    Parses an environment variable as a boolean.
    Returns the default value if the variable is unset.
    True values: "1", "true", "t", "yes", "y", "on" (case-insensitive).
    """
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def env_int(name: str, default: int, *, min_value: int = 1) -> int:
    """
    Parses an environment variable as an integer.
    Returns the default value if the variable is unset.
    """
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        val = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got={raw!r}") from e
    if val < min_value:
        raise ValueError(f"{name} must be >= {min_value}, got={val}")
    return val


def env_float(name: str, default: float, *, min_value: float = 0.0) -> float:
    """
    Parses an environment variable as a float (seconds, mostly).
    Returns the default value if the variable is unset.
    """
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        val = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got={raw!r}") from e
    if val < min_value:
        raise ValueError(f"{name} must be >= {min_value}, got={val}")
    return val


def project_root() -> Path:
    """Returns the absolute path to the project root directory."""
    return Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class Paths:
    """Immutable container for project directory paths."""
    base_dir: Path
    log_dir: Path


def build_paths() -> Paths:
    """
    Resolves project paths and creates the log directory on disk.
    Defaults log_dir to ./logs if LOG_DIR env var is not set.
    """
    base = project_root()

    log_dir = Path(os.getenv("LOG_DIR", str(base / "logs")))
    log_dir.mkdir(parents=True, exist_ok=True)

    return Paths(base_dir=base, log_dir=log_dir)


@dataclass(frozen=True)
class MutexSettings:
    """Default timing policy for new mutex handles."""
    validity: int
    acquire_timeout: float
    retry_interval: float
    max_retry_interval: float


def load_mutex_settings() -> MutexSettings:
    """
    Loads mutex timing settings from environment variables.

    - MUTEX_VALIDITY: lease lifetime in seconds
    - MUTEX_ACQUIRE_TIMEOUT: how long acquire() keeps retrying
    - MUTEX_RETRY_INTERVAL / MUTEX_MAX_RETRY_INTERVAL: backoff bounds
    """
    retry_interval = env_float("MUTEX_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL, min_value=0.0)
    max_retry_interval = env_float("MUTEX_MAX_RETRY_INTERVAL", DEFAULT_MAX_RETRY_INTERVAL, min_value=0.0)
    if max_retry_interval < retry_interval:
        raise ValueError(
            f"MUTEX_MAX_RETRY_INTERVAL must be >= MUTEX_RETRY_INTERVAL, "
            f"got={max_retry_interval} < {retry_interval}"
        )

    return MutexSettings(
        validity=env_int("MUTEX_VALIDITY", DEFAULT_VALIDITY, min_value=1),
        acquire_timeout=env_float("MUTEX_ACQUIRE_TIMEOUT", DEFAULT_ACQUIRE_TIMEOUT, min_value=0.0),
        retry_interval=retry_interval,
        max_retry_interval=max_retry_interval,
    )


@dataclass(frozen=True)
class RedisSettings:
    """Connection settings for the default Redis lease store."""
    url: str
    key_prefix: str
    socket_timeout: float


def load_redis_settings() -> RedisSettings:
    """
    Loads Redis connection settings from environment variables.

    - REDIS_URL: redis://[:password@]host:port/db
    - MUTEX_KEY_PREFIX: namespace prepended to every lock key
    - REDIS_SOCKET_TIMEOUT: seconds before a round trip counts as unavailable
    """
    return RedisSettings(
        url=os.getenv("REDIS_URL") or "redis://localhost:6379/0",
        key_prefix=os.getenv("MUTEX_KEY_PREFIX", ""),
        socket_timeout=env_float("REDIS_SOCKET_TIMEOUT", 5.0, min_value=0.001),
    )


def configure_logging(paths: Paths) -> None:
    """Configure loguru sinks (console + file)."""
    logger.remove()

    def _console_sink(message: str) -> None:
        # stderr keeps stdout free for the output of commands run under the lock
        sys.stderr.write(message)
        sys.stderr.flush()

    # Console sink
    logger.add(
        _console_sink,
        level=os.getenv("LOG_LEVEL", "INFO"),
        colorize=env_bool("LOG_COLOR", default=True),
        backtrace=False,
        diagnose=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level}</level> | "
               "<level>{message}</level>\n",
    )

    # File sink
    logger.add(
        str(paths.log_dir / "mutex.log"),
        rotation="10 MB",
        retention="7 days",
        level="DEBUG",
        backtrace=False,
        diagnose=False,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}",
    )
