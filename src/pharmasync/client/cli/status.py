"""Status command for the pharmasync CLI.

Commands:
- status: Probe the remote store once and show the sync backlog
"""

from __future__ import annotations

import click

from pharmasync.client.cli.config import get_remote_config, open_runtime
from pharmasync.client.scheduler import LAST_BACKUP_KEY


@click.command()
def status() -> None:
    """Show connectivity and pending sync items."""
    remote_config = get_remote_config()
    if not remote_config.is_configured:
        click.echo("Remote store not configured. Run 'pharmasync configure' first.", err=True)

    runtime = open_runtime()
    try:
        stats = runtime.queue.stats()
        result = runtime.monitor.check_now(force=True)

        if result.is_online:
            state = click.style("online", fg="green")
        else:
            state = click.style("offline", fg="red")
        click.echo(f"Remote store: {remote_config.url or '(not set)'} [{state}]")
        click.echo(f"State: {runtime.sync_state().value}")
        click.echo(f"Pending items: {stats['total']}")
        if stats["exhausted"]:
            click.echo(
                click.style(
                    f"Failed items: {stats['exhausted']} (run 'pharmasync queue retry')",
                    fg="yellow",
                )
            )

        last_backup = runtime.store.load(LAST_BACKUP_KEY)
        click.echo(
            f"Last automatic backup: {last_backup.decode('utf-8') if last_backup else 'never'}"
        )
    finally:
        runtime.close()
