"""Seeding commands for the pharmasync CLI.

Commands:
- seed: Copy local products, sales, users and stock entries to the remote store
- verify: Compare local and remote row counts
"""

from __future__ import annotations

import sys

import click

from pharmasync.client.cli.config import open_runtime
from pharmasync.client.runtime import SyncRuntime
from pharmasync.client.sync import SEED_TABLE_NAMES, LocalSeeder

table_option = click.option(
    "--table",
    "-t",
    "tables",
    multiple=True,
    type=click.Choice(SEED_TABLE_NAMES),
    help="Table to process (repeatable, default: all).",
)


def _require_seeder(runtime: SyncRuntime) -> LocalSeeder:
    """Get the seeder, exiting if the backend or remote store is unusable."""
    if runtime.seeder is None:
        click.echo(
            "Error: Local backend not configured. Run 'pharmasync configure --backend-url ...' first.",
            err=True,
        )
        sys.exit(1)
    if not runtime.monitor.check_now(force=True).use_remote:
        click.echo("Error: Remote store is unreachable.", err=True)
        sys.exit(1)
    return runtime.seeder


@click.command()
@table_option
def seed(tables: tuple[str, ...]) -> None:
    """Copy local data to the remote store.

    Every row is upserted by its key, so seeding again is safe. Local
    values win over remote ones.
    """
    runtime = open_runtime()
    try:
        seeder = _require_seeder(runtime)
        results = seeder.seed(tables or None)
    finally:
        runtime.close()

    for name, result in results.items():
        if result.success:
            click.echo(click.style(f"  ✓ {name}: {result.count} row(s)", fg="green"))
        elif result.error:
            click.echo(click.style(f"  ✗ {name}: {result.error}", fg="red"))
        else:
            click.echo(click.style(
                f"  ! {name}: {result.count} row(s), {result.skipped} skipped", fg="yellow"
            ))

    failed = [name for name, result in results.items() if not result.success]
    if failed:
        click.echo(f"\nSeeding incomplete: {', '.join(failed)}", err=True)
        sys.exit(1)
    click.echo("\nSeeding complete.")


@click.command()
@table_option
def verify(tables: tuple[str, ...]) -> None:
    """Compare local and remote row counts."""
    runtime = open_runtime()
    try:
        seeder = _require_seeder(runtime)
        reports = seeder.verify(tables or None)
    finally:
        runtime.close()

    for name, report in reports.items():
        if report.error:
            click.echo(click.style(f"  ✗ {name}: {report.error}", fg="red"))
        elif report.consistent:
            click.echo(click.style(f"  ✓ {name}: {report.local} row(s)", fg="green"))
        else:
            click.echo(click.style(
                f"  ! {name}: local {report.local}, remote {report.remote}", fg="yellow"
            ))

    if not all(report.consistent for report in reports.values()):
        sys.exit(1)
