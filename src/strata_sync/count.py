# src/strata_sync/count.py
"""Document counting for progress estimates and post-run verification."""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from strata_sync.config import TransferConfig
from strata_sync.models import VerifyEntry
from strata_sync.store import DocumentSnapshot, DocumentStore
from strata_sync.transfer import dest_collection_path
from strata_sync.traversal import CollectionVisitor, walk_collection

logger: logging.Logger = logging.getLogger(__name__)

CollectionCountHook = Callable[[str, int], None]
SubcollectionHook = Callable[[str], None]


class _CountVisitor(CollectionVisitor):
    def __init__(
        self,
        config: TransferConfig,
        on_collection: Optional[CollectionCountHook],
        on_subcollection: Optional[SubcollectionHook],
    ) -> None:
        self._config: TransferConfig = config
        self._on_collection: Optional[CollectionCountHook] = on_collection
        self._on_subcollection: Optional[SubcollectionHook] = on_subcollection
        self.total: int = 0

    async def read(
        self, store: DocumentStore, collection_path: str, depth: int
    ) -> List[DocumentSnapshot]:
        return await store.get_documents(
            collection_path,
            filters=self._config.where if depth == 0 else (),
            limit=self._config.limit if depth == 0 else 0,
            ids_only=True,
        )

    async def on_documents(
        self,
        collection_path: str,
        documents: Sequence[DocumentSnapshot],
        depth: int,
    ) -> Sequence[DocumentSnapshot]:
        self.total += len(documents)
        if depth == 0 and self._on_collection is not None:
            self._on_collection(collection_path, len(documents))
        return documents

    def on_subcollection(self, path: str) -> None:
        if self._on_subcollection is not None:
            self._on_subcollection(path)


async def count_documents(
    store: DocumentStore,
    collection_path: str,
    config: TransferConfig,
    on_collection: Optional[CollectionCountHook] = None,
    on_subcollection: Optional[SubcollectionHook] = None,
) -> int:
    """
    Count the documents a transfer of `collection_path` would visit.

    Without sub-collections a server-side aggregate is used. With them,
    id-only reads are needed to discover each document's sub-collections.

    Args:
        store (DocumentStore): The source store.
        collection_path (str): A root collection.
        config (TransferConfig): Supplies filters, limit, depth and excludes.
        on_collection (CollectionCountHook, optional): Called with the root
            collection and its own document count.
        on_subcollection (SubcollectionHook, optional): Called for every
            sub-collection entered.

    Returns:
        int: The number of documents, sub-collections included.
    """
    if not config.include_subcollections:
        total: int = await store.count(collection_path, config.where)
        if config.limit > 0:
            total = min(total, config.limit)
        if on_collection is not None:
            on_collection(collection_path, total)
        return total

    visitor: _CountVisitor = _CountVisitor(config, on_collection, on_subcollection)
    await walk_collection(
        store,
        collection_path,
        visitor,
        recursive=True,
        max_depth=config.max_depth,
        exclude=config.exclude,
    )
    return visitor.total


async def verify_counts(
    source: DocumentStore, destination: DocumentStore, config: TransferConfig
) -> Dict[str, VerifyEntry]:
    """Compare root collection counts on both sides of a finished transfer."""
    results: Dict[str, VerifyEntry] = {}
    for collection in config.collections:
        dest_path: str = dest_collection_path(collection, config.rename_collection)
        source_count: int = await source.count(collection)
        dest_count: int = await destination.count(dest_path)
        results[collection] = VerifyEntry(source_count, dest_count)
        if source_count != dest_count:
            logger.warning(
                f"Count mismatch for '{collection}': "
                f"source={source_count}, dest={dest_count}"
            )
    return results
