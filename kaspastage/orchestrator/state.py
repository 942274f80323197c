"""Persisted description of the current installation."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..config import load_config, write_json_atomic

_logging = logging.getLogger(__name__)

STATE_SCHEMA_VERSION = 1


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class InstallationState:
    """Installed profiles, their configuration values and tracked services."""
    profiles: list[str] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)
    services: dict[str, dict[str, str]] = field(default_factory=dict)
    updated_at: str | None = None

    def configuration(self) -> dict[str, Any]:
        return {"profiles": list(self.profiles), "values": dict(self.values)}

    def same_configuration(self, other: "InstallationState") -> bool:
        return (
            sorted(self.profiles) == sorted(other.profiles)
            and self.values == other.values
        )

    def with_stopped(self, names: list[str]) -> "InstallationState":
        """Copy of this state with the named services marked as stopped."""
        services = {name: dict(info) for name, info in self.services.items()}
        for name in names:
            if name in services:
                services[name]["status"] = "stopped"
        return InstallationState(
            profiles=list(self.profiles), values=dict(self.values), services=services
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": STATE_SCHEMA_VERSION,
            "updated_at": self.updated_at,
            "configuration": self.configuration(),
            "services": {name: dict(info) for name, info in self.services.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstallationState":
        """Build state from a stored document, ignoring unknown fields."""
        configuration = data.get("configuration") or {}
        services = data.get("services") or {}
        return cls(
            profiles=[str(p) for p in configuration.get("profiles", [])],
            values={str(k): str(v) for k, v in (configuration.get("values") or {}).items()},
            services={
                str(name): {
                    "profile": str(info.get("profile", "")),
                    "status": str(info.get("status", "unknown")),
                }
                for name, info in services.items()
                if isinstance(info, dict)
            },
            updated_at=data.get("updated_at"),
        )


class StateStore:
    """Reads and atomically writes ``state.json``."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> InstallationState:
        if not self.path.exists():
            return InstallationState()
        return InstallationState.from_dict(load_config(self.path))

    def save(self, state: InstallationState) -> None:
        state.updated_at = utc_now()
        write_json_atomic(self.path, state.to_dict())
        _logging.debug(f"Saved installation state to {self.path}")


__all__ = ["InstallationState", "StateStore", "utc_now"]
