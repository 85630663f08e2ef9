# src/strata_sync/models.py
"""Shared run-level records: counters, conflicts and the final result."""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class Stats:
    """
    Mutable run counters.

    Attributes:
        collections_processed (int): Non-empty collections visited.
        documents_transferred (int): Documents staged for writing.
        documents_deleted (int): Documents deleted by clear or orphan sync.
        errors (int): Per-document and per-collection failures.
        conflicts (int): Destination documents modified mid-transfer.
        integrity_errors (int): Written documents whose hash did not match.
    """

    collections_processed: int = 0
    documents_transferred: int = 0
    documents_deleted: int = 0
    errors: int = 0
    conflicts: int = 0
    integrity_errors: int = 0

    def copy(self) -> "Stats":
        return Stats(**asdict(self))

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Stats":
        """
        Build stats from a mapping, ignoring unknown keys.

        Raises:
            ValueError: If `data` is not a mapping.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"stats must be an object, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in known})


@dataclass(frozen=True)
class ConflictInfo:
    """
    A destination document whose version changed before it was overwritten.

    Attributes:
        collection (str): Destination collection path.
        document_id (str): Destination document id.
        reason (str): What was observed.
    """

    collection: str
    document_id: str
    reason: str


@dataclass(frozen=True)
class VerifyEntry:
    """Source and destination document counts for one collection."""

    source: int
    dest: int

    @property
    def match(self) -> bool:
        return self.source == self.dest

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "dest": self.dest, "match": self.match}


@dataclass
class TransferResult:
    """
    The outcome of `run_transfer`.

    Attributes:
        success (bool): Whether the run completed without a fatal error.
        stats (Stats): Counters accumulated so far.
        duration (float): Wall-clock seconds.
        dry_run (bool): Whether writes were skipped.
        error (str, optional): The top-level error message on failure.
        verify_result (Dict[str, VerifyEntry], optional): Count comparison.
        conflicts (List[ConflictInfo]): Conflicts recorded during the run.
    """

    success: bool
    stats: Stats
    duration: float
    dry_run: bool = False
    error: Optional[str] = None
    verify_result: Optional[Dict[str, VerifyEntry]] = None
    conflicts: List[ConflictInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "dry_run": self.dry_run,
            "duration": round(self.duration, 3),
            "stats": self.stats.to_dict(),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.verify_result is not None:
            data["verify"] = {
                name: entry.to_dict() for name, entry in self.verify_result.items()
            }
        if self.conflicts:
            data["conflicts"] = [asdict(c) for c in self.conflicts]
        return data
