"""Path utilities for configuration and runtime files.

Answers "where do my config/state files live" for the daemon, with a
per-user fallback for unprivileged invocations (status queries, live
monitor) that cannot write the system locations.
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/etc/audio-optimizer/config.yaml")
CONFIG_ENV_VAR = "AUDIO_OPTIMIZER_CONFIG"


def get_config_path() -> Path:
    """Get the configuration file path with environment variable support.

    Returns:
        Path: ``$AUDIO_OPTIMIZER_CONFIG`` if set, else the installed default
    """
    return Path(os.getenv(CONFIG_ENV_VAR, str(DEFAULT_CONFIG_PATH)))


def get_user_data_dir() -> Path:
    """Per-user fallback directory (``~/.local/share/audio-optimizer``)."""
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / "audio-optimizer"


def resolve_writable(path: Path) -> Path:
    """Return ``path`` if its directory is writable, else the per-user fallback.

    Creates the parent directory of whichever path is returned.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if os.access(path.parent, os.W_OK):
            return path
    except OSError:
        pass

    fallback = get_user_data_dir() / path.name
    fallback.parent.mkdir(parents=True, exist_ok=True)
    return fallback
