"""Versioned checkpoints of the installation state with undo and restore.

Store layout (under the state directory)::

    checkpoints/
        index.json          {"schema_version": 1, "head": id | null, "checkpoints": [id, ...]}
        cp-<ns>.json        one immutable snapshot per checkpoint

``head`` is the undo cursor: the checkpoint the current state was last
restored from. Creating a checkpoint clears it.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..config import ConfigError, load_config, write_json_atomic
from ..errors import (
    CheckpointFormatError,
    CheckpointNotFound,
    NoCheckpointAvailable,
    StopFailed,
)
from .state import InstallationState, StateStore, utc_now

_logging = logging.getLogger(__name__)

CHECKPOINT_SCHEMA_VERSION = 1
ID_PREFIX = "cp-"

Reconciler = Callable[[InstallationState, InstallationState], Awaitable[None]]


@dataclass(frozen=True)
class Checkpoint:
    id: str
    description: str
    created_at: str
    profiles: tuple[str, ...] = ()
    values: dict[str, str] = field(default_factory=dict, hash=False)
    services: dict[str, dict[str, str]] = field(default_factory=dict, hash=False)

    @property
    def state(self) -> InstallationState:
        return InstallationState(
            profiles=list(self.profiles),
            values=dict(self.values),
            services={name: dict(info) for name, info in self.services.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": CHECKPOINT_SCHEMA_VERSION,
            "id": self.id,
            "description": self.description,
            "created_at": self.created_at,
            "configuration": {"profiles": list(self.profiles), "values": dict(self.values)},
            "services": {name: dict(info) for name, info in self.services.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        """Read a stored checkpoint, ignoring fields this version does not know.

        Raises:
            CheckpointFormatError: On a newer schema version or missing fields
        """
        version = data.get("schema_version", 1)
        if not isinstance(version, int) or version > CHECKPOINT_SCHEMA_VERSION:
            raise CheckpointFormatError(
                f"unsupported checkpoint schema version {version!r} "
                f"(supported: {CHECKPOINT_SCHEMA_VERSION})"
            )
        for key in ("id", "description", "created_at"):
            if not isinstance(data.get(key), str):
                raise CheckpointFormatError(f"checkpoint field '{key}' is missing or invalid")

        state = InstallationState.from_dict(data)
        return cls(
            id=data["id"],
            description=data["description"],
            created_at=data["created_at"],
            profiles=tuple(state.profiles),
            values=state.values,
            services=state.services,
        )

    @classmethod
    def capture(cls, checkpoint_id: str, description: str, state: InstallationState) -> "Checkpoint":
        return cls(
            id=checkpoint_id,
            description=description,
            created_at=utc_now(),
            profiles=tuple(state.profiles),
            values=dict(state.values),
            services={name: dict(info) for name, info in state.services.items()},
        )


def _id_ns(checkpoint_id: str) -> int:
    try:
        return int(checkpoint_id.removeprefix(ID_PREFIX))
    except ValueError:
        return 0


class CheckpointStore:
    """JSON files on disk, one per checkpoint, plus an ordered index."""

    def __init__(self, directory: Path):
        self.directory = directory
        self.index_path = directory / "index.json"

    def _read_index(self) -> dict[str, Any]:
        if not self.index_path.exists():
            return {"schema_version": CHECKPOINT_SCHEMA_VERSION, "head": None, "checkpoints": []}
        try:
            data = load_config(self.index_path)
        except ConfigError as e:
            raise CheckpointFormatError(f"unreadable checkpoint index: {e}") from e
        version = data.get("schema_version", 1)
        if not isinstance(version, int) or version > CHECKPOINT_SCHEMA_VERSION:
            raise CheckpointFormatError(f"unsupported checkpoint index version {version!r}")
        ids = data.get("checkpoints", [])
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise CheckpointFormatError("checkpoint index 'checkpoints' must be a list of ids")
        head = data.get("head")
        return {
            "schema_version": CHECKPOINT_SCHEMA_VERSION,
            "head": head if isinstance(head, str) else None,
            "checkpoints": ids,
        }

    def _write_index(self, index: dict[str, Any]) -> None:
        write_json_atomic(self.index_path, index)

    def ids(self) -> list[str]:
        return list(self._read_index()["checkpoints"])

    @property
    def head(self) -> str | None:
        return self._read_index()["head"]

    def set_head(self, checkpoint_id: str | None) -> None:
        index = self._read_index()
        index["head"] = checkpoint_id
        self._write_index(index)

    def next_id(self) -> str:
        ns = time.time_ns()
        ids = self.ids()
        if ids:
            ns = max(ns, _id_ns(ids[-1]) + 1)
        return f"{ID_PREFIX}{ns}"

    def _path(self, checkpoint_id: str) -> Path:
        return self.directory / f"{checkpoint_id}.json"

    def append(self, checkpoint: Checkpoint) -> None:
        write_json_atomic(self._path(checkpoint.id), checkpoint.to_dict())
        index = self._read_index()
        index["checkpoints"].append(checkpoint.id)
        index["head"] = None
        self._write_index(index)

    def load(self, checkpoint_id: str) -> Checkpoint:
        path = self._path(checkpoint_id)
        if checkpoint_id not in self.ids() or not path.exists():
            raise CheckpointNotFound(checkpoint_id)
        try:
            data = load_config(path)
        except ConfigError as e:
            raise CheckpointFormatError(f"unreadable checkpoint {checkpoint_id}: {e}") from e
        return Checkpoint.from_dict(data)

    def load_all(self) -> list[Checkpoint]:
        return [self.load(checkpoint_id) for checkpoint_id in self.ids()]

    def remove(self, checkpoint_ids: list[str]) -> None:
        index = self._read_index()
        doomed = set(checkpoint_ids)
        index["checkpoints"] = [i for i in index["checkpoints"] if i not in doomed]
        if index["head"] in doomed:
            index["head"] = None
        self._write_index(index)
        for checkpoint_id in checkpoint_ids:
            self._path(checkpoint_id).unlink(missing_ok=True)


class CheckpointManager:
    """Create, undo to and restore checkpoints of the installation state.

    Restores call ``reconciler`` with ``(previous, restored)`` so running
    services can be brought in line, and only then write the captured state.
    If reconciliation stops some services before failing, the previous state
    is kept with those services marked as stopped.
    """

    def __init__(
        self,
        store: CheckpointStore,
        state_store: StateStore,
        reconciler: Reconciler | None = None,
    ):
        self.store = store
        self.state_store = state_store
        self.reconciler = reconciler

    def create_checkpoint(self, description: str) -> str:
        checkpoint = Checkpoint.capture(
            self.store.next_id(), description, self.state_store.load()
        )
        self.store.append(checkpoint)
        _logging.info(f"Created checkpoint {checkpoint.id}: {description}")
        return checkpoint.id

    def list_checkpoints(self) -> list[Checkpoint]:
        return self.store.load_all()

    @property
    def head(self) -> str | None:
        return self.store.head

    async def undo_last_change(self) -> Checkpoint:
        """Restore the newest checkpoint before the undo cursor whose
        configuration differs from the current state.

        Raises:
            NoCheckpointAvailable: If there is no such checkpoint
        """
        ids = self.store.ids()
        head = self.store.head
        if head in ids:
            ids = ids[: ids.index(head)]

        current = self.state_store.load()
        for checkpoint_id in reversed(ids):
            checkpoint = self.store.load(checkpoint_id)
            if not checkpoint.state.same_configuration(current):
                await self._restore(checkpoint)
                return checkpoint
        raise NoCheckpointAvailable()

    async def restore_version(self, checkpoint_id: str) -> Checkpoint:
        """Restore a named checkpoint.

        Raises:
            CheckpointNotFound: If no checkpoint has this ID
        """
        checkpoint = self.store.load(checkpoint_id)
        await self._restore(checkpoint)
        return checkpoint

    async def _restore(self, checkpoint: Checkpoint) -> None:
        previous = self.state_store.load()
        restored = checkpoint.state
        try:
            if self.reconciler is not None:
                await self.reconciler(previous, restored)
        except StopFailed as e:
            _logging.error(
                f"Reconciling {checkpoint.id} failed, keeping previous state "
                f"with {e.stopped} stopped"
            )
            self.state_store.save(previous.with_stopped(e.stopped))
            raise
        self.state_store.save(restored)
        self.store.set_head(checkpoint.id)
        _logging.info(f"Restored checkpoint {checkpoint.id}: {checkpoint.description}")

    def prune(self, keep: int) -> list[str]:
        """Delete the oldest checkpoints so that at most ``keep`` remain."""
        if keep < 1:
            raise ValueError("keep must be at least 1")
        ids = self.store.ids()
        doomed = ids[: max(0, len(ids) - keep)]
        if doomed:
            self.store.remove(doomed)
            _logging.info(f"Pruned {len(doomed)} checkpoints")
        return doomed


__all__ = [
    "CHECKPOINT_SCHEMA_VERSION",
    "Checkpoint",
    "CheckpointStore",
    "CheckpointManager",
]
