# src/strata_sync/traversal.py
"""
Recursive collection walk shared by transfer, clear, count and orphan sync.

`walk_collection` owns the shape of the traversal: read a collection, hand
its documents to a visitor, descend into the sub-collections of the
documents the visitor selects, and finally notify the visitor that the
children are done. The visitors decide what reading and visiting mean.
"""

import logging
from typing import Iterator, List, Sequence, TypeVar

from strata_sync.patterns import matches
from strata_sync.store import DocumentSnapshot, DocumentStore

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Split `items` into consecutive slices of at most `size` elements."""
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def subcollection_path(collection_path: str, doc_id: str, subcollection_id: str) -> str:
    return f"{collection_path}/{doc_id}/{subcollection_id}"


class CollectionVisitor:
    """Traversal hooks. Subclasses override the ones they need."""

    async def read(
        self, store: DocumentStore, collection_path: str, depth: int
    ) -> List[DocumentSnapshot]:
        """Read the documents of one collection."""
        return await store.get_documents(collection_path, ids_only=True)

    async def on_documents(
        self,
        collection_path: str,
        documents: Sequence[DocumentSnapshot],
        depth: int,
    ) -> Sequence[DocumentSnapshot]:
        """
        Visit the documents of a collection before its sub-collections.

        Returns:
            Sequence[DocumentSnapshot]: The documents whose sub-collections
                should be walked.
        """
        return documents

    async def after_subcollections(
        self,
        collection_path: str,
        documents: Sequence[DocumentSnapshot],
        depth: int,
    ) -> None:
        """Called once every selected sub-collection has been walked."""

    def on_subcollection(self, path: str) -> None:
        """Called before descending into a sub-collection."""

    def on_excluded(self, path: str) -> None:
        logger.debug(f"Skipping excluded subcollection: {path}")


def should_descend(recursive: bool, depth: int, max_depth: int) -> bool:
    """Whether sub-collections at `depth + 1` are within reach."""
    return recursive and (max_depth == 0 or depth < max_depth)


async def walk_collection(
    store: DocumentStore,
    collection_path: str,
    visitor: CollectionVisitor,
    recursive: bool = False,
    max_depth: int = 0,
    exclude: Sequence[str] = (),
    depth: int = 0,
) -> None:
    """
    Walk a collection and, optionally, its sub-collections depth-first.

    Args:
        store (DocumentStore): The store to read from.
        collection_path (str): The collection to walk.
        visitor (CollectionVisitor): Receives the traversal hooks.
        recursive (bool): Descend into sub-collections.
        max_depth (int): Deepest sub-collection level (0 = unlimited).
        exclude (Sequence[str]): Sub-collection exclude patterns.
        depth (int): Current depth; 0 for a root collection.
    """
    documents: List[DocumentSnapshot] = await visitor.read(store, collection_path, depth)
    selected: Sequence[DocumentSnapshot] = await visitor.on_documents(
        collection_path, documents, depth
    )

    if should_descend(recursive, depth, max_depth):
        for document in selected:
            for sub_id in await store.list_subcollections(collection_path, document.id):
                sub_path: str = subcollection_path(collection_path, document.id, sub_id)
                if matches(sub_path, exclude):
                    visitor.on_excluded(sub_path)
                    continue
                visitor.on_subcollection(sub_path)
                await walk_collection(
                    store,
                    sub_path,
                    visitor,
                    recursive=recursive,
                    max_depth=max_depth,
                    exclude=exclude,
                    depth=depth + 1,
                )

    await visitor.after_subcollections(collection_path, documents, depth)
