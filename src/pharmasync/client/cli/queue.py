"""Queue inspection commands for the pharmasync CLI.

Commands:
- queue list: Show pending sync items
- queue retry: Reset retry counters and replay everything now
- queue clear: Drop every pending item
"""

from __future__ import annotations

import sys

import click

from pharmasync.client.cli.config import open_runtime


@click.group()
def queue() -> None:
    """Inspect and manage the offline sync queue."""


@queue.command("list")
def list_items() -> None:
    """List pending sync items, oldest first."""
    runtime = open_runtime()
    try:
        items = runtime.queue.get_queue()
    finally:
        runtime.close()

    if not items:
        click.echo("Sync queue is empty.")
        return

    click.echo(f"{len(items)} pending item(s):\n")
    for item in items:
        key = item.conflict_key
        if item.filters is not None:
            target = "(update) " + ",".join(f"{k}={v}" for k, v in item.filters.items())
        elif key:
            target = f"{key}={item.payload[key]}"
        else:
            target = "(insert)"
        line = (
            f"  {item.id[:8]}  {item.enqueued_at:%Y-%m-%d %H:%M:%S}  "
            f"{item.collection:<24} {target:<24} "
            f"retries {item.retry_count}/{item.max_retries}"
        )
        if item.exhausted:
            line = click.style(line + "  FAILED", fg="red")
        click.echo(line)


@queue.command()
def retry() -> None:
    """Retry every pending item, including failed ones."""
    runtime = open_runtime()
    try:
        before = runtime.queue.get_queue_size()
        if before == 0:
            click.echo("Sync queue is empty.")
            return

        runtime.queue.retry_all()
        runtime.queue.wait_for_drain(timeout=30.0)
        remaining = runtime.queue.get_queue_size()
        click.echo(f"Synced {before - remaining} item(s), {remaining} still pending.")
        if remaining:
            sys.exit(1)
    finally:
        runtime.close()


@queue.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def clear(yes: bool) -> None:
    """Drop every pending item without syncing it."""
    runtime = open_runtime()
    try:
        size = runtime.queue.get_queue_size()
        if size == 0:
            click.echo("Sync queue is empty.")
            return
        if not yes and not click.confirm(f"Discard {size} unsynced item(s)?"):
            click.echo("Aborted.")
            return
        removed = runtime.queue.clear()
        click.echo(f"Removed {removed} item(s).")
    finally:
        runtime.close()
