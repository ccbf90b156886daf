# main.py

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Tuple

import click
from dotenv import load_dotenv
from loguru import logger

# Import internal project components
from distributed_mutex import DistributedMutex, MutexOptions
from distributed_mutex.config import build_paths, configure_logging, load_mutex_settings
from distributed_mutex.errors import LockTimeout, StoreError
from distributed_mutex.ports.lease_store import LeaseStore
from distributed_mutex.store import default_store

# --- 1. Environment Setup ---
# Load .env from the current working directory for local development
ENV_PATH = Path.cwd() / ".env"

# Allow system environment variables (Docker/CI) to override .env
load_dotenv(dotenv_path=ENV_PATH, override=False)

EXIT_LOCK_TIMEOUT = 3
EXIT_STORE_FAILURE = 4


# --- 2. Dependency Injection Builders ---

def build_store() -> LeaseStore:
    """Lease store used by every command. Tests swap the default store."""
    return default_store()


def build_mutex(key: str, validity: int | None, timeout: float | None) -> DistributedMutex:
    """
    Assemble a mutex from environment settings, with CLI flags taking precedence.
    """
    options = MutexOptions.from_settings(load_mutex_settings(), store=build_store())
    return DistributedMutex(key, options, validity=validity, acquire_timeout=timeout)


# --- 3. Main CLI Commands ---

CONTEXT_SETTINGS = dict(help_option_names=['-h', '--help'], max_content_width=120)


@click.group(context_settings=CONTEXT_SETTINGS)
def cli() -> None:
    """
    DISTRIBUTED MUTEX TOOL

    Coordinates exclusive access to named critical sections across hosts,
    using Redis as the only meeting point.

    \b
    USAGE EXAMPLES:
    1. Run a job at most once at a time across the fleet:
       $ mutexctl run nightly-backup -- ./backup.sh

    2. Inspect who holds a lock:
       $ mutexctl status nightly-backup

    \b
    CONFIGURATION (environment or .env):
    REDIS_URL, MUTEX_KEY_PREFIX, MUTEX_VALIDITY, MUTEX_ACQUIRE_TIMEOUT, LOG_LEVEL
    """
    # Setup logging configuration on CLI start
    paths = build_paths()
    configure_logging(paths)


@cli.command("status", help="Show the current lease on KEY.")
@click.argument("key")
def status_cmd(key: str) -> None:
    try:
        store = build_store()
        record = store.read(key)
        if record is None:
            click.echo(f"{key}: unlocked")
            return

        now = store.now()
        if record.is_expired(now):
            click.echo(f"{key}: stale lease (owner={record.owner_token or '-'}, expired {now - record.expires_at:.1f}s ago)")
        else:
            click.echo(f"{key}: locked (owner={record.owner_token or '-'}, {record.remaining(now):.1f}s remaining)")

    except StoreError as error:
        logger.error(f"Store failure: {error}")
        sys.exit(EXIT_STORE_FAILURE)


@cli.command("run", help="Run COMMAND while holding the lock on KEY.",
             context_settings=dict(ignore_unknown_options=True))
@click.argument("key")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--validity", type=click.IntRange(min=1), default=None,
              help="Lease lifetime in seconds [default: MUTEX_VALIDITY or 60].")
@click.option("--timeout", type=click.FloatRange(min=0), default=None,
              help="Give up acquiring after this many seconds [default: MUTEX_ACQUIRE_TIMEOUT or 90].")
def run_cmd(key: str, command: Tuple[str, ...], validity: int | None, timeout: float | None) -> None:
    """
    Executes COMMAND under the mutex and exits with its exit code.

    Exit codes: 3 when the lock could not be acquired in time,
    4 when the store failed.
    """
    try:
        mutex = build_mutex(key, validity, timeout)

        logger.info(f"Waiting for lock: {key} (validity={mutex.validity}s)")

        def _work() -> int:
            logger.info(f"Running under lock {key}: {' '.join(command)}")
            return subprocess.run(list(command), env=os.environ.copy()).returncode

        returncode = mutex.synchronize(_work)

    except LockTimeout as error:
        logger.error(str(error))
        sys.exit(EXIT_LOCK_TIMEOUT)
    except StoreError as error:
        logger.error(f"Store failure: {error}")
        sys.exit(EXIT_STORE_FAILURE)
    except FileNotFoundError as error:
        logger.error(f"Command not found: {error}")
        sys.exit(127)

    if returncode != 0:
        logger.warning(f"Command exited with {returncode}")
    sys.exit(returncode)


if __name__ == "__main__":
    cli()
