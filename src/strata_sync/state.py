# src/strata_sync/state.py
"""
In-memory resume tracking and throttled checkpoint persistence.

`CompletedDocsCache` answers "was this document already transferred?" in
O(1). `StateSaver` records completed batches into the cache and the live
checkpoint immediately, but only writes the checkpoint file every few
batches or seconds, trading a little re-work after a crash for far less
I/O on large runs.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from strata_sync.checkpoint import CheckpointState, save_checkpoint
from strata_sync.exceptions import CheckpointError
from strata_sync.models import Stats

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_BATCH_INTERVAL: int = 10
DEFAULT_TIME_INTERVAL_S: float = 5.0


class CompletedDocsCache:
    """Per-collection sets of completed document ids."""

    def __init__(self, record: Optional[Dict[str, List[str]]] = None) -> None:
        self._sets: Dict[str, Set[str]] = {}
        self._total: int = 0
        for collection, ids in (record or {}).items():
            self.add_batch(collection, ids)

    def has(self, collection: str, doc_id: str) -> bool:
        completed = self._sets.get(collection)
        return completed is not None and doc_id in completed

    def add(self, collection: str, doc_id: str) -> bool:
        """Add one id. Returns False if it was already present."""
        completed: Set[str] = self._sets.setdefault(collection, set())
        if doc_id in completed:
            return False
        completed.add(doc_id)
        self._total += 1
        return True

    def add_batch(self, collection: str, doc_ids: Iterable[str]) -> None:
        completed: Set[str] = self._sets.setdefault(collection, set())
        before: int = len(completed)
        completed.update(doc_ids)
        self._total += len(completed) - before

    @property
    def total_count(self) -> int:
        return self._total

    def to_record(self) -> Dict[str, List[str]]:
        """Serialize back to the array-per-collection checkpoint form."""
        return {collection: sorted(ids) for collection, ids in self._sets.items()}


class StateSaver:
    """
    Batches checkpoint writes for a running transfer.

    Every call to `mark_batch_completed` is reflected in memory at once;
    the file is rewritten after `batch_interval` batches or `time_interval`
    seconds since the last write, whichever comes first, and on `flush`.
    """

    def __init__(
        self,
        path: Path,
        state: CheckpointState,
        batch_interval: int = DEFAULT_BATCH_INTERVAL,
        time_interval: float = DEFAULT_TIME_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the saver.

        Args:
            path (Path): The checkpoint file.
            state (CheckpointState): The live checkpoint, created or loaded.
            batch_interval (int): Batches between writes.
            time_interval (float): Seconds between writes.
            clock (Callable[[], float]): Monotonic clock in seconds.
        """
        self._path: Path = path
        self._state: CheckpointState = state
        self._cache: CompletedDocsCache = CompletedDocsCache(state.completed_docs)
        self._batch_interval: int = max(1, batch_interval)
        self._time_interval: float = time_interval
        self._clock: Callable[[], float] = clock
        self._last_save: float = clock()
        self._batches_since_save: int = 0
        self._dirty: bool = False

    def mark_batch_completed(
        self, collection: str, doc_ids: Iterable[str], stats: Stats
    ) -> None:
        """
        Record a committed batch and persist if a threshold is reached.

        Args:
            collection (str): Source collection path of the batch.
            doc_ids (Iterable[str]): Source ids of every document in the batch.
            stats (Stats): The current run counters.
        """
        recorded: List[str] = self._state.completed_docs.setdefault(collection, [])
        for doc_id in doc_ids:
            if self._cache.add(collection, doc_id):
                recorded.append(doc_id)
        self._state.stats = stats.copy()
        self._dirty = True
        self._batches_since_save += 1

        if self._should_save():
            self._save()

    def _should_save(self) -> bool:
        if self._batches_since_save >= self._batch_interval:
            return True
        return self._clock() - self._last_save >= self._time_interval

    def _save(self) -> None:
        try:
            save_checkpoint(self._path, self._state)
        except CheckpointError as e:
            # Keep the changes pending so the next threshold or flush retries.
            logger.error(str(e))
            return
        self._last_save = self._clock()
        self._batches_since_save = 0
        self._dirty = False
        logger.debug(
            f"Checkpoint saved: {self._cache.total_count} documents completed."
        )

    def flush(self) -> None:
        """Write the checkpoint now if anything changed since the last write."""
        if self._dirty:
            self._save()

    def is_completed(self, collection: str, doc_id: str) -> bool:
        return self._cache.has(collection, doc_id)

    @property
    def completed_docs(self) -> CompletedDocsCache:
        """The live set of completed ids, updated by every recorded batch."""
        return self._cache

    @property
    def completed_count(self) -> int:
        return self._cache.total_count

    @property
    def pending(self) -> bool:
        """Whether there are changes not yet written to disk."""
        return self._dirty

    def get_state(self) -> CheckpointState:
        return self._state
