"""Configuration utilities for the pharmasync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pharmasync.client.runtime import SyncRuntime
from pharmasync.core.config import BackendConfig, RemoteConfig, SyncSettings

ENV_REMOTE_URL = "PHARMASYNC_REMOTE_URL"
ENV_REMOTE_KEY = "PHARMASYNC_REMOTE_KEY"
ENV_BACKEND_URL = "PHARMASYNC_BACKEND_URL"


def get_config_dir() -> Path:
    """Get the configuration directory for pharmasync.

    Returns:
        Path to ~/.pharmasync or equivalent.
    """
    return Path.home() / ".pharmasync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the state database holding the queue."""
    return get_config_dir() / "state.db"


def get_log_file() -> Path:
    """Get the path to the log file."""
    return get_config_dir() / "pharmasync.log"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_remote_config() -> RemoteConfig:
    """Build the remote store configuration.

    Environment variables take precedence over the config file.
    """
    config = load_config()
    return RemoteConfig(
        url=os.environ.get(ENV_REMOTE_URL) or config.get("remote_url", ""),
        api_key=os.environ.get(ENV_REMOTE_KEY) or config.get("remote_key", ""),
    )


def get_backend_config() -> BackendConfig | None:
    """Build the local backend configuration.

    Returns:
        BackendConfig, or None if no backend URL is configured.
    """
    config = load_config()
    url = os.environ.get(ENV_BACKEND_URL) or config.get("backend_url")
    if not url:
        return None
    return BackendConfig(url=url)


def open_runtime() -> SyncRuntime:
    """Build the sync components from the current configuration.

    The caller is responsible for closing the returned runtime.
    """
    state_db = get_state_db()
    state_db.parent.mkdir(parents=True, exist_ok=True)
    return SyncRuntime.build(
        state_db,
        get_remote_config(),
        backend_config=get_backend_config(),
        settings=SyncSettings(),
    )
