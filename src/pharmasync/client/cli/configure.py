"""Configure command for the pharmasync CLI.

Commands:
- configure: Store the remote store and local backend connection settings
"""

from __future__ import annotations

import click

from pharmasync.client.cli.config import get_config_file, load_config, save_config


@click.command()
@click.option("--remote-url", default=None, help="Remote store URL (e.g., https://abc.supabase.co).")
@click.option("--remote-key", default=None, help="Remote store API key.")
@click.option("--backend-url", default=None, help="Local backend URL (e.g., http://localhost).")
def configure(remote_url: str | None, remote_key: str | None, backend_url: str | None) -> None:
    """Store connection settings.

    Options not given keep their current value. When called without any
    option, prompts for each setting.
    """
    config = load_config()

    if remote_url is None and remote_key is None and backend_url is None:
        remote_url = click.prompt("Remote store URL", default=config.get("remote_url", ""))
        remote_key = click.prompt(
            "Remote store API key",
            default=config.get("remote_key", ""),
            hide_input=True,
            show_default=False,
        )
        backend_url = click.prompt(
            "Local backend URL (empty to disable)",
            default=config.get("backend_url", ""),
        )

    updates = {
        "remote_url": remote_url,
        "remote_key": remote_key,
        "backend_url": backend_url,
    }
    for key, value in updates.items():
        if value is None:
            continue
        value = value.strip().rstrip("/") if key.endswith("_url") else value.strip()
        if value:
            config[key] = value
        else:
            config.pop(key, None)

    save_config(config)
    click.echo(f"Configuration saved to {get_config_file()}")
