# src/strata_sync/cleanup.py
"""
Destructive operations on the destination: clearing collections before a
transfer and deleting orphans after it.
"""

import logging
from typing import List, Optional, Sequence, Set

from strata_sync.config import TransferConfig
from strata_sync.output import TransferLog
from strata_sync.patterns import matches
from strata_sync.rate_limiter import RateLimiter
from strata_sync.store import DocumentSnapshot, DocumentStore, WriteBatch
from strata_sync.transfer import (
    TransferContext,
    commit_batch,
    dest_collection_path,
    dest_doc_id,
)
from strata_sync.traversal import (
    CollectionVisitor,
    chunked,
    subcollection_path,
    walk_collection,
)

logger: logging.Logger = logging.getLogger(__name__)


async def delete_documents(
    store: DocumentStore,
    collection_path: str,
    doc_ids: Sequence[str],
    config: TransferConfig,
    output: TransferLog,
    rate_limiter: Optional[RateLimiter] = None,
) -> int:
    """
    Delete documents from one collection in batches of `config.batch_size`.

    Nothing is committed on a dry run; the count of documents that would be
    deleted is still returned.

    Returns:
        int: The number of documents deleted.
    """
    deleted: int = 0
    for chunk in chunked(doc_ids, config.batch_size):
        if not config.dry_run:
            batch: WriteBatch = store.batch()
            for doc_id in chunk:
                batch.delete(collection_path, doc_id)
            await commit_batch(batch, config, rate_limiter, output, "delete")
        deleted += len(chunk)
        output.log_info(
            "Deleted documents" if not config.dry_run else "Would delete documents",
            collection=collection_path,
            count=len(chunk),
        )
    return deleted


class _ClearVisitor(CollectionVisitor):
    """Deletes each collection's documents after its sub-collections."""

    def __init__(
        self,
        store: DocumentStore,
        config: TransferConfig,
        output: TransferLog,
        rate_limiter: Optional[RateLimiter],
    ) -> None:
        self._store: DocumentStore = store
        self._config: TransferConfig = config
        self._output: TransferLog = output
        self._rate_limiter: Optional[RateLimiter] = rate_limiter
        self.deleted: int = 0

    async def after_subcollections(
        self,
        collection_path: str,
        documents: Sequence[DocumentSnapshot],
        depth: int,
    ) -> None:
        if not documents:
            return
        self.deleted += await delete_documents(
            self._store,
            collection_path,
            [doc.id for doc in documents],
            self._config,
            self._output,
            self._rate_limiter,
        )

    def on_excluded(self, path: str) -> None:
        self._output.log_info(f"Skipping excluded subcollection: {path}")


async def clear_collection(
    store: DocumentStore,
    collection_path: str,
    config: TransferConfig,
    output: TransferLog,
    recursive: bool,
    rate_limiter: Optional[RateLimiter] = None,
    max_depth: int = 0,
) -> int:
    """
    Delete every document of a collection, sub-collections first.

    Args:
        store (DocumentStore): The store to delete from.
        collection_path (str): The collection to clear.
        config (TransferConfig): Supplies batch size, retries, exclude
            patterns and the dry-run flag.
        output (TransferLog): The output sink.
        recursive (bool): Also clear sub-collections.
        rate_limiter (RateLimiter, optional): Delete pacing.
        max_depth (int): Deepest sub-collection level (0 = unlimited).

    Returns:
        int: The number of documents deleted.
    """
    visitor: _ClearVisitor = _ClearVisitor(store, config, output, rate_limiter)
    await walk_collection(
        store,
        collection_path,
        visitor,
        recursive=recursive,
        max_depth=max_depth,
        exclude=config.exclude,
    )
    return visitor.deleted


class _OrphanVisitor(CollectionVisitor):
    """Deletes destination documents whose source counterpart is gone."""

    def __init__(self, ctx: TransferContext) -> None:
        self._ctx: TransferContext = ctx
        self.deleted: int = 0

    async def on_documents(
        self,
        collection_path: str,
        documents: Sequence[DocumentSnapshot],
        depth: int,
    ) -> Sequence[DocumentSnapshot]:
        ctx: TransferContext = self._ctx
        config: TransferConfig = ctx.config
        target: str = dest_collection_path(collection_path, config.rename_collection)

        expected: Set[str] = {
            dest_doc_id(doc.id, config.id_prefix, config.id_suffix) for doc in documents
        }
        dest_docs: List[DocumentSnapshot] = await ctx.destination.get_documents(
            target, ids_only=True
        )
        orphans: List[str] = [doc.id for doc in dest_docs if doc.id not in expected]
        if not orphans:
            return documents

        ctx.output.log_info(f"Found {len(orphans)} orphan documents", collection=target)
        if config.include_subcollections:
            for orphan_id in orphans:
                await self._clear_orphan_subcollections(target, orphan_id)

        self.deleted += await delete_documents(
            ctx.destination, target, orphans, config, ctx.output, ctx.rate_limiter
        )
        return documents

    async def _clear_orphan_subcollections(self, target: str, orphan_id: str) -> None:
        ctx: TransferContext = self._ctx
        for sub_id in await ctx.destination.list_subcollections(target, orphan_id):
            sub_path: str = subcollection_path(target, orphan_id, sub_id)
            if matches(sub_path, ctx.config.exclude):
                continue
            self.deleted += await clear_collection(
                ctx.destination,
                sub_path,
                ctx.config,
                ctx.output,
                recursive=True,
                rate_limiter=ctx.rate_limiter,
            )

    def on_excluded(self, path: str) -> None:
        self._ctx.output.log_info(f"Skipping excluded subcollection: {path}")


async def delete_orphan_documents(ctx: TransferContext, source_path: str) -> int:
    """
    Delete destination documents absent from the source collection.

    The source collection and, when sub-collections are included, its
    sub-collections are compared against their mapped destination
    collections. Orphaned documents lose their sub-collections too.

    Args:
        ctx (TransferContext): The run context.
        source_path (str): A root source collection.

    Returns:
        int: The number of documents deleted.
    """
    visitor: _OrphanVisitor = _OrphanVisitor(ctx)
    await walk_collection(
        ctx.source,
        source_path,
        visitor,
        recursive=ctx.config.include_subcollections,
        max_depth=ctx.config.max_depth,
        exclude=ctx.config.exclude,
    )
    return visitor.deleted
