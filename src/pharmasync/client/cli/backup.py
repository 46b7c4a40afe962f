"""Backup command for the pharmasync CLI.

Commands:
- backup: Run the automatic backup job now
"""

from __future__ import annotations

import sys

import click

from pharmasync.client.cli.config import open_runtime


@click.command()
@click.option("--user-id", type=int, default=None, help="User the backup is attributed to.")
def backup(user_id: int | None) -> None:
    """Create a backup now, ignoring the time of day."""
    runtime = open_runtime()
    try:
        if runtime.scheduler is None:
            click.echo(
                "Error: Local backend not configured. Run 'pharmasync configure --backend-url ...' first.",
                err=True,
            )
            sys.exit(1)

        runtime.monitor.check_now(force=True)
        result = runtime.scheduler.run_now(user_id=user_id)
        if result is None:
            click.echo("Error: Could not reach the local backend.", err=True)
            sys.exit(1)
        if not result.success:
            click.echo(f"Backup failed: {result.message}", err=True)
            sys.exit(1)
        if result.skipped:
            click.echo(f"Backup skipped: {result.message}")
            return

        click.echo(f"Backup created: {result.filename or '(unnamed)'} ({result.file_size} bytes)")
    finally:
        runtime.close()
