"""Configuration and state path helpers for kaspastage."""

import os
from pathlib import Path


def get_config_dir() -> Path:
    """Return XDG-compliant config directory: ~/.config/kaspastage"""
    return Path.home() / ".config" / "kaspastage"


def get_config_path() -> Path:
    """Return path to user config file.

    Priority:
    1. KASPASTAGE_CONFIG environment variable (if set)
    2. ~/.config/kaspastage/config.json (default XDG location)
    """
    if "KASPASTAGE_CONFIG" in os.environ:
        return Path(os.environ["KASPASTAGE_CONFIG"])
    return get_config_dir() / "config.json"


def get_state_dir(create: bool = False) -> Path:
    """Return directory holding installation state and checkpoints.

    Priority:
    1. KASPASTAGE_STATE_DIR environment variable (if set)
    2. ~/.local/state/kaspastage

    Args:
        create: If True, create the directory when missing
    """
    if "KASPASTAGE_STATE_DIR" in os.environ:
        state_dir = Path(os.environ["KASPASTAGE_STATE_DIR"])
    else:
        state_dir = Path.home() / ".local" / "state" / "kaspastage"
    if create:
        state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def get_checkpoint_dir(state_dir: Path | None = None) -> Path:
    return (state_dir or get_state_dir()) / "checkpoints"


def get_packaged_profiles_path() -> Path:
    """Return path to the bundled profile catalog (read-only)."""
    return Path(__file__).parent / "data" / "profiles.json"


def get_project_dir() -> Path:
    """Return the docker compose project directory.

    Priority:
    1. KASPASTAGE_PROJECT_DIR environment variable (if set)
    2. The current working directory
    """
    if "KASPASTAGE_PROJECT_DIR" in os.environ:
        return Path(os.environ["KASPASTAGE_PROJECT_DIR"])
    return Path.cwd()
