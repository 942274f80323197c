"""Profile-based staged installation orchestrator for Kaspa node deployments."""

import logging

from .config import ConfigError, EngineSettings, UserConfig
from .errors import OrchestratorError
from .orchestrator import Coordinator, ProfileRegistry

__version__ = "0.1.0"

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

_debug_enabled = False


def setup_logging(debug: bool = False) -> None:
    """Configure stderr logging once: DEBUG with ``debug``, WARNING otherwise."""
    global _debug_enabled
    _debug_enabled = debug
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return _debug_enabled


__all__ = [
    "__version__",
    "setup_logging",
    "is_debug",
    "ConfigError",
    "EngineSettings",
    "UserConfig",
    "OrchestratorError",
    "Coordinator",
    "ProfileRegistry",
]
