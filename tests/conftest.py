# tests/conftest.py
"""
Pytest configuration and fixtures for the strata-sync test suite.

This module provides:
- An in-memory hierarchical document store implementing the store protocol,
  with batched commits, version markers, sub-collections and failure
  injection.
- Fixtures for a source/destination store pair, a quiet output sink and a
  configuration factory writing its checkpoint into a temporary directory.
"""

import itertools
import operator
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import pytest

from strata_sync import retry
from strata_sync.config import TransferConfig, WhereFilter
from strata_sync.output import TransferLog
from strata_sync.store import DocumentSnapshot

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class FakeWriteBatch:
    """Buffers operations and applies them to the store on commit."""

    def __init__(self, store: "FakeDocumentStore") -> None:
        self._store: FakeDocumentStore = store
        self._ops: List[Tuple[str, str, str, Optional[Dict[str, Any]], bool]] = []

    def set(
        self,
        collection_path: str,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        self._ops.append(("set", collection_path, doc_id, dict(data), merge))

    def delete(self, collection_path: str, doc_id: str) -> None:
        self._ops.append(("delete", collection_path, doc_id, None, False))

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        self._store.commit_attempts += 1
        if self._store.commit_hook is not None:
            self._store.commit_hook(self._store.commit_attempts)
        if self._store.fail_commits > 0:
            self._store.fail_commits -= 1
            raise RuntimeError("commit failed")
        for kind, path, doc_id, data, merge in self._ops:
            if kind == "set":
                assert data is not None
                self._store.put(path, doc_id, data, merge=merge)
            else:
                self._store.remove(path, doc_id)
        self._store.committed_batches.append(len(self._ops))


class FakeDocumentStore:
    """
    An in-memory hierarchical document store.

    Collections are keyed by their full path (``users/u1/orders``); every
    write bumps the document's version marker.
    """

    def __init__(self, name: str = "fake") -> None:
        self._name: str = name
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._versions: Dict[str, str] = {}
        self._clock: Iterator[int] = itertools.count(1)
        self.fail_commits: int = 0
        self.fail_reads: Set[str] = set()
        self.fail_connect: Optional[Exception] = None
        self.commit_attempts: int = 0
        self.committed_batches: List[int] = []
        self.closed: bool = False
        self.before_get_many: Optional[Callable[[str, Sequence[str]], None]] = None
        self.commit_hook: Optional[Callable[[int], None]] = None

    # --- Seeding and inspection helpers ---
    def put(
        self,
        collection_path: str,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        docs: Dict[str, Dict[str, Any]] = self._collections.setdefault(collection_path, {})
        if merge and doc_id in docs:
            docs[doc_id] = {**docs[doc_id], **data}
        else:
            docs[doc_id] = dict(data)
        self._versions[f"{collection_path}/{doc_id}"] = f"v{next(self._clock)}"

    def remove(self, collection_path: str, doc_id: str) -> None:
        self._collections.get(collection_path, {}).pop(doc_id, None)
        self._versions.pop(f"{collection_path}/{doc_id}", None)

    def docs(self, collection_path: str) -> Dict[str, Dict[str, Any]]:
        return dict(self._collections.get(collection_path, {}))

    def seed(self, collection_path: str, count: int, **fields: Any) -> List[str]:
        """Create `count` documents ``doc000``... with an ``n`` field."""
        ids: List[str] = []
        for n in range(count):
            doc_id: str = f"doc{n:03d}"
            self.put(collection_path, doc_id, {"n": n, **fields})
            ids.append(doc_id)
        return ids

    # --- DocumentStore protocol ---
    @property
    def name(self) -> str:
        return self._name

    async def list_collections(self) -> List[str]:
        if self.fail_connect is not None:
            raise self.fail_connect
        return sorted(p for p, docs in self._collections.items() if "/" not in p and docs)

    async def list_subcollections(self, collection_path: str, doc_id: str) -> List[str]:
        prefix: str = f"{collection_path}/{doc_id}/"
        return sorted(
            path[len(prefix) :]
            for path, docs in self._collections.items()
            if docs and path.startswith(prefix) and "/" not in path[len(prefix) :]
        )

    def _snapshot(self, collection_path: str, doc_id: str, ids_only: bool) -> DocumentSnapshot:
        data: Dict[str, Any] = self._collections[collection_path][doc_id]
        return DocumentSnapshot(
            id=doc_id,
            collection_path=collection_path,
            data={} if ids_only else dict(data),
            update_time=self._versions.get(f"{collection_path}/{doc_id}"),
        )

    async def get_documents(
        self,
        collection_path: str,
        filters: Sequence[WhereFilter] = (),
        limit: int = 0,
        ids_only: bool = False,
    ) -> List[DocumentSnapshot]:
        if collection_path in self.fail_reads:
            raise RuntimeError(f"read failed for {collection_path}")
        docs: Dict[str, Dict[str, Any]] = self._collections.get(collection_path, {})
        selected: List[str] = [
            doc_id
            for doc_id in sorted(docs)
            if all(
                f.field in docs[doc_id] and _OPERATORS[f.op](docs[doc_id][f.field], f.value)
                for f in filters
            )
        ]
        if limit > 0:
            selected = selected[:limit]
        return [self._snapshot(collection_path, doc_id, ids_only) for doc_id in selected]

    async def get_many(
        self, collection_path: str, doc_ids: Sequence[str]
    ) -> Dict[str, DocumentSnapshot]:
        if self.before_get_many is not None:
            self.before_get_many(collection_path, doc_ids)
        docs: Dict[str, Dict[str, Any]] = self._collections.get(collection_path, {})
        return {
            doc_id: self._snapshot(collection_path, doc_id, False)
            for doc_id in doc_ids
            if doc_id in docs
        }

    async def count(
        self, collection_path: str, filters: Sequence[WhereFilter] = ()
    ) -> int:
        return len(await self.get_documents(collection_path, filters, ids_only=True))

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    async def close(self) -> None:
        self.closed = True


# --- Fixtures ---
@pytest.fixture(scope="function")
def source_store() -> FakeDocumentStore:
    return FakeDocumentStore("source")


@pytest.fixture(scope="function")
def dest_store() -> FakeDocumentStore:
    return FakeDocumentStore("destination")


@pytest.fixture(scope="function")
def store_factory(
    source_store: FakeDocumentStore, dest_store: FakeDocumentStore
) -> Callable[[TransferConfig], Tuple[FakeDocumentStore, FakeDocumentStore]]:
    """Provide a store factory that hands out the fake store pair."""
    return lambda config: (source_store, dest_store)


@pytest.fixture(scope="function")
def transfer_log() -> TransferLog:
    """Provide an output sink that keeps the console quiet."""
    return TransferLog(quiet=True)


@pytest.fixture(scope="function")
def make_config(tmp_path: Path) -> Callable[..., TransferConfig]:
    """
    Provide a factory for `TransferConfig` objects.

    Defaults describe a real (non-dry) run of the ``users`` collection with a
    checkpoint in the test's temporary directory; keyword arguments override.

    Args:
        tmp_path (Path): The pytest fixture for a temporary directory.
    """

    def _factory(**overrides: Any) -> TransferConfig:
        values: Dict[str, Any] = {
            "source": "source-project",
            "destination": "dest-project",
            "collections": ("users",),
            "dry_run": False,
            "checkpoint_file": tmp_path / "state.json",
        }
        values.update(overrides)
        return TransferConfig(**values)

    return _factory


@pytest.fixture(scope="function")
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make retries immediate."""
    monkeypatch.setattr(retry, "backoff_delay", lambda attempt, base, cap: 0.0)
