# src/strata_sync/checkpoint.py
"""
Durable transfer progress stored as a schema-versioned JSON file.

The checkpoint records which documents of which collections have already
been written, so an interrupted run can be resumed without rewriting them.
Writes go to a temporary file in the same directory which is fsynced and
then renamed over the target, so a crash never leaves a truncated file.
"""

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Dict, Iterator, List, Optional

from strata_sync.config import TransferConfig
from strata_sync.exceptions import CheckpointError
from strata_sync.models import Stats

logger: logging.Logger = logging.getLogger(__name__)

CHECKPOINT_VERSION: int = 1


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CheckpointState:
    """
    Transfer progress as persisted on disk.

    Attributes:
        version (int): Schema version; must equal `CHECKPOINT_VERSION`.
        source (str): Source store identity.
        destination (str): Destination store identity.
        collections (List[str]): Root collections of the run.
        started_at (str): ISO-8601 timestamp of the first run.
        updated_at (str): ISO-8601 timestamp of the last save.
        completed_docs (Dict[str, List[str]]): Collection path to the ids
            of documents already transferred.
        stats (Stats): Counter snapshot at the last update.
    """

    version: int
    source: str
    destination: str
    collections: List[str]
    started_at: str
    updated_at: str
    completed_docs: Dict[str, List[str]] = field(default_factory=dict)
    stats: Stats = field(default_factory=Stats)

    @property
    def completed_count(self) -> int:
        return sum(len(ids) for ids in self.completed_docs.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source": self.source,
            "destination": self.destination,
            "collections": list(self.collections),
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "completed_docs": {k: list(v) for k, v in self.completed_docs.items()},
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointState":
        """
        Build a checkpoint from its JSON form.

        Raises:
            ValueError: If `completed_docs` is not a mapping of id lists.
        """
        completed: Any = data.get("completed_docs", {})
        if not isinstance(completed, dict) or not all(
            isinstance(ids, list) for ids in completed.values()
        ):
            raise ValueError("completed_docs must map collections to id lists")
        return cls(
            version=int(data["version"]),
            source=str(data["source"]),
            destination=str(data["destination"]),
            collections=[str(c) for c in data.get("collections", [])],
            started_at=str(data["started_at"]),
            updated_at=str(data["updated_at"]),
            completed_docs={
                str(k): [str(i) for i in v]
                for k, v in completed.items()
            },
            stats=Stats.from_dict(data.get("stats", {})),
        )


def load_checkpoint(path: Path) -> Optional[CheckpointState]:
    """
    Load a checkpoint from disk.

    Args:
        path (Path): The checkpoint file.

    Returns:
        Optional[CheckpointState]: The checkpoint, or None if the file is
            absent, unreadable, malformed or of another schema version.
    """
    if not path.exists():
        return None
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top-level value is not an object")
        if data.get("version") != CHECKPOINT_VERSION:
            logger.warning(
                f"Checkpoint version mismatch in '{path}' "
                f"(expected {CHECKPOINT_VERSION}, got {data.get('version')})."
            )
            return None
        return CheckpointState.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.error(f"Failed to load checkpoint '{path}': {e}")
        return None


@contextlib.contextmanager
def _atomic_writer(path: Path) -> Iterator[IO[str]]:
    """
    Yield a temp file that replaces `path` once the block exits cleanly.

    The temp file is removed on every failure path.
    """
    directory: Path = path.parent
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(directory)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def save_checkpoint(path: Path, state: CheckpointState) -> None:
    """
    Stamp `updated_at` and atomically write the checkpoint.

    Args:
        path (Path): The checkpoint file.
        state (CheckpointState): The state to persist.

    Raises:
        CheckpointError: If the file could not be written.
    """
    state.updated_at = _utc_now()
    try:
        with _atomic_writer(path) as handle:
            json.dump(state.to_dict(), handle, indent=2)
    except OSError as e:
        raise CheckpointError(f"Failed to save checkpoint '{path}': {e}") from e


def delete_checkpoint(path: Path) -> None:
    """Remove the checkpoint file; a missing file is not an error."""
    try:
        path.unlink()
        logger.debug(f"Checkpoint '{path}' removed.")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove checkpoint '{path}': {e}")


def create_initial_checkpoint(config: TransferConfig) -> CheckpointState:
    """Build a fresh checkpoint for a new run of `config`."""
    now: str = _utc_now()
    return CheckpointState(
        version=CHECKPOINT_VERSION,
        source=config.source,
        destination=config.destination,
        collections=list(config.collections),
        started_at=now,
        updated_at=now,
        completed_docs={},
        stats=Stats(),
    )


def validate_for_resume(state: CheckpointState, config: TransferConfig) -> List[str]:
    """
    List the reasons `state` cannot be resumed under `config`.

    Args:
        state (CheckpointState): The loaded checkpoint.
        config (TransferConfig): The current run configuration.

    Returns:
        List[str]: One message per mismatch; empty when resume is safe.
    """
    errors: List[str] = []
    if state.source != config.source:
        errors.append(
            f"Source mismatch: checkpoint has '{state.source}', "
            f"config has '{config.source}'"
        )
    if state.destination != config.destination:
        errors.append(
            f"Destination mismatch: checkpoint has '{state.destination}', "
            f"config has '{config.destination}'"
        )
    configured = set(config.collections)
    for collection in state.collections:
        if collection not in configured:
            errors.append(
                f"Checkpoint contains collection '{collection}' "
                "not in current config"
            )
    return errors
