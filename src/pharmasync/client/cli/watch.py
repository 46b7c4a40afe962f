"""Watch command for the pharmasync CLI.

Commands:
- watch: Keep the queue flowing and report remote changes until interrupted
"""

from __future__ import annotations

import sys
import threading
from typing import Any

import click

from pharmasync.client.cli.config import get_remote_config, open_runtime
from pharmasync.client.notifications import notify_error, notify_low_stock, notify_new_notification
from pharmasync.client.sync import ChangeListener
from pharmasync.core.types import ConnectivityStatus


class DesktopChangeListener(ChangeListener):
    """Forwards poller events to the terminal and desktop notifications."""

    def __init__(self, notify: bool = True) -> None:
        self._notify = notify
        self._low_stock_keys: frozenset[Any] = frozenset()

    def on_record_added(self, record: dict[str, Any]) -> None:
        click.echo(f"  + {record.get('message') or record.get('notification_id')}")
        if self._notify:
            notify_new_notification(record)

    def on_record_removed(self, key: Any) -> None:
        click.echo(f"  - notification {key}")

    def on_low_stock(self, records: list[dict[str, Any]]) -> None:
        keys = frozenset(
            r.get("stock_entry_id") or r.get("product_id") for r in records
        )
        if keys == self._low_stock_keys:
            return
        self._low_stock_keys = keys
        if not records:
            return
        click.echo(click.style(f"  ! {len(records)} product(s) low on stock", fg="yellow"))
        if self._notify:
            notify_low_stock(records)


@click.command()
@click.option("--no-notify", is_flag=True, help="Disable desktop notifications.")
@click.option("--no-poll", is_flag=True, help="Do not poll for remote changes.")
def watch(no_notify: bool, no_poll: bool) -> None:
    """Sync queued changes and watch for remote changes.

    Runs connectivity checks, replays the offline queue whenever the
    remote store is reachable, polls notifications and low stock, and
    runs the daily backup. Stops on Ctrl+C.
    """
    remote_config = get_remote_config()
    if not remote_config.is_configured:
        click.echo("Error: Remote store not configured. Run 'pharmasync configure' first.", err=True)
        sys.exit(1)

    runtime = open_runtime()

    def on_status(status: ConnectivityStatus) -> None:
        if status.is_online:
            click.echo(click.style("Remote store is online.", fg="green"))
        else:
            click.echo(click.style("Remote store is offline, writes will be queued.", fg="red"))
            if not no_notify:
                notify_error("Remote store unreachable, working offline")

    runtime.monitor.subscribe(on_status)
    runtime.poller.subscribe(DesktopChangeListener(notify=not no_notify))

    click.echo(f"Watching {remote_config.url}...")
    pending = runtime.queue.get_queue_size()
    if pending:
        click.echo(f"{pending} queued item(s) waiting for sync.")
    if runtime.scheduler is None:
        click.echo("Local backend not configured, automatic backups disabled.")
    click.echo("(Ctrl+C to stop)\n")

    stop = threading.Event()
    try:
        runtime.start(poll=not no_poll)
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        runtime.close()
