"""Command-line interface for pharmasync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store remote store and local backend settings
- status: Probe the remote store and show the sync backlog
- queue list|retry|clear: Inspect and manage the offline sync queue
- watch: Sync queued changes and watch for remote changes
- backup: Run the automatic backup now
- seed: Copy local tables to the remote store
- verify: Compare local and remote row counts
"""

from __future__ import annotations

import logging
import sys

import click

from pharmasync.client.cli.backup import backup
from pharmasync.client.cli.config import (
    get_backend_config,
    get_config_dir,
    get_config_file,
    get_log_file,
    get_remote_config,
    get_state_db,
    load_config,
    open_runtime,
    save_config,
)
from pharmasync.client.cli.configure import configure
from pharmasync.client.cli.queue import queue
from pharmasync.client.cli.seed import seed, verify
from pharmasync.client.cli.status import status
from pharmasync.client.cli.watch import watch

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        verbose: Log at DEBUG instead of INFO.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    # Root logger for pharmasync
    root_logger = logging.getLogger("pharmasync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    log_file = get_log_file()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        root_logger.warning("Cannot write log file %s: %s", log_file, e)
        return
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


@click.group()
@click.version_option(package_name="pharmasync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """PharmaSync - Offline-first sync for pharmacy point of sale."""
    setup_logging(verbose)


# Configuration commands
cli.add_command(configure)
cli.add_command(status)

# Sync commands
cli.add_command(queue)
cli.add_command(watch)

# Backup and seeding commands
cli.add_command(backup)
cli.add_command(seed)
cli.add_command(verify)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    "setup_logging",
    # Config utilities
    "get_backend_config",
    "get_config_dir",
    "get_config_file",
    "get_log_file",
    "get_remote_config",
    "get_state_db",
    "load_config",
    "open_runtime",
    "save_config",
]
