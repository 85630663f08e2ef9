# src/strata_sync/transfer.py
"""
Collection transfer: read, transform, stage and commit documents in batches.

For every source document the transfer decides whether it was already
completed by an earlier run, runs the optional transform, derives the
destination id and collection, checks its size, and stages the write.
Batches are committed through the retry policy, gated by the rate limiter,
and then recorded in the checkpoint.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, cast

from strata_sync.config import TransferConfig
from strata_sync.doc_size import MAX_DOCUMENT_SIZE, estimate_document_size, format_bytes
from strata_sync.exceptions import DocumentTooLargeError
from strata_sync.integrity import hash_document_data
from strata_sync.models import ConflictInfo, Stats
from strata_sync.output import TransferLog
from strata_sync.rate_limiter import RateLimiter
from strata_sync.retry import with_retry
from strata_sync.state import CompletedDocsCache, StateSaver
from strata_sync.store import DocumentSnapshot, DocumentStore, WriteBatch
from strata_sync.transform import Skip, TransformFn, apply_transform
from strata_sync.traversal import CollectionVisitor, chunked, walk_collection

logger: logging.Logger = logging.getLogger(__name__)


def dest_collection_path(source_path: str, rename: Mapping[str, str]) -> str:
    """Apply the rename map to the root segment of `source_path` only."""
    root, sep, rest = source_path.partition("/")
    renamed: Optional[str] = rename.get(root)
    if not renamed:
        return source_path
    return f"{renamed}{sep}{rest}"


def dest_doc_id(source_id: str, prefix: Optional[str], suffix: Optional[str]) -> str:
    return f"{prefix or ''}{source_id}{suffix or ''}"


@dataclass
class TransferContext:
    """
    Everything a transfer needs for one run.

    Attributes:
        source (DocumentStore): Store documents are read from.
        destination (DocumentStore): Store documents are written to.
        config (TransferConfig): Run parameters.
        stats (Stats): Shared run counters.
        output (TransferLog): Logging and output sink.
        transform (TransformFn, optional): User transform.
        state_saver (StateSaver, optional): Checkpoint tracking; None on
            dry runs.
        completed (CompletedDocsCache, optional): Documents finished by an
            earlier run, which are not written again. Defaults to the state
            saver's set; a resumed dry run passes the checkpoint's set alone.
        rate_limiter (RateLimiter, optional): Write pacing; None when
            unlimited.
        conflicts (List[ConflictInfo]): Conflicts recorded so far.
        on_progress (Callable[[int], None], optional): Called with the number
            of source documents handled.
    """

    source: DocumentStore
    destination: DocumentStore
    config: TransferConfig
    stats: Stats
    output: TransferLog
    transform: Optional[TransformFn] = None
    state_saver: Optional[StateSaver] = None
    rate_limiter: Optional[RateLimiter] = None
    conflicts: List[ConflictInfo] = field(default_factory=list)
    on_progress: Optional[Callable[[int], None]] = None
    completed: Optional[CompletedDocsCache] = None

    def __post_init__(self) -> None:
        if self.completed is None and self.state_saver is not None:
            self.completed = self.state_saver.completed_docs

    def is_completed(self, collection_path: str, doc_id: str) -> bool:
        return self.completed is not None and self.completed.has(collection_path, doc_id)


class DocumentAction(enum.Enum):
    """What to do with a source document."""

    WRITE = "write"
    SKIP = "skip"
    RESUMED = "resumed"
    FAILED = "failed"


@dataclass
class PreparedDocument:
    action: DocumentAction
    dest_id: str
    data: Optional[Dict[str, Any]] = None


def check_document_size(data: Dict[str, Any], doc_path: str) -> int:
    """
    Return the estimated size of a document about to be written.

    Raises:
        DocumentTooLargeError: If it exceeds `MAX_DOCUMENT_SIZE`.
    """
    size: int = estimate_document_size(data, doc_path)
    if size > MAX_DOCUMENT_SIZE:
        raise DocumentTooLargeError(
            f"Document {doc_path} exceeds the 1 MB limit ({format_bytes(size)}). "
            "Use --skip-oversized to skip it."
        )
    return size


async def commit_batch(
    batch: WriteBatch,
    config: TransferConfig,
    rate_limiter: Optional[RateLimiter],
    output: TransferLog,
    label: str,
) -> None:
    """Commit a batch behind the rate limiter and the retry policy."""
    if rate_limiter is not None:
        await rate_limiter.acquire(len(batch))

    def _on_retry(attempt: int, retries: int, error: Exception, delay: float) -> None:
        output.log_error(
            f"Retry {label} {attempt}/{retries}", error=str(error), delay=delay
        )

    await with_retry(batch.commit, retries=config.retries, on_retry=_on_retry)


class TransferVisitor(CollectionVisitor):
    """Copies the documents of every visited collection to the destination."""

    def __init__(self, ctx: TransferContext) -> None:
        self._ctx: TransferContext = ctx

    async def read(
        self, store: DocumentStore, collection_path: str, depth: int
    ) -> List[DocumentSnapshot]:
        config: TransferConfig = self._ctx.config

        def _on_retry(attempt: int, retries: int, error: Exception, delay: float) -> None:
            self._ctx.output.log_error(
                f"Retry {attempt}/{retries} for {collection_path}",
                error=str(error),
                delay=delay,
            )

        # Filters and limits only apply to root collections
        return await with_retry(
            lambda: store.get_documents(
                collection_path,
                filters=config.where if depth == 0 else (),
                limit=config.limit if depth == 0 else 0,
            ),
            retries=config.retries,
            on_retry=_on_retry,
        )

    async def on_documents(
        self,
        collection_path: str,
        documents: Sequence[DocumentSnapshot],
        depth: int,
    ) -> Sequence[DocumentSnapshot]:
        if not documents:
            return []
        ctx: TransferContext = self._ctx
        # A collection an earlier run started on is already in the resumed stats
        if not any(ctx.is_completed(collection_path, doc.id) for doc in documents):
            ctx.stats.collections_processed += 1
        ctx.output.log_info(
            f"Processing collection: {collection_path}", documents=len(documents)
        )
        target: str = dest_collection_path(collection_path, ctx.config.rename_collection)

        descend: List[DocumentSnapshot] = []
        for batch_docs in chunked(documents, ctx.config.batch_size):
            descend.extend(await self._transfer_batch(collection_path, target, batch_docs))
        return descend

    def on_excluded(self, path: str) -> None:
        self._ctx.output.log_info(f"Skipping excluded subcollection: {path}")

    def _prepare(
        self, doc: DocumentSnapshot, collection_path: str, target: str
    ) -> PreparedDocument:
        ctx: TransferContext = self._ctx
        config: TransferConfig = ctx.config
        dest_id: str = dest_doc_id(doc.id, config.id_prefix, config.id_suffix)

        if ctx.is_completed(collection_path, doc.id):
            return PreparedDocument(DocumentAction.RESUMED, dest_id)

        data: Dict[str, Any] = doc.data
        if ctx.transform is not None:
            try:
                outcome = apply_transform(ctx.transform, data, doc.id, doc.path)
            except Exception as e:
                ctx.stats.errors += 1
                ctx.output.log_error(
                    f"Transform failed for document {doc.id}",
                    collection=collection_path,
                    error=str(e),
                )
                return PreparedDocument(DocumentAction.FAILED, dest_id)
            if isinstance(outcome, Skip):
                ctx.output.log_info(
                    f"Skipped document ({outcome.reason})",
                    collection=collection_path,
                    docId=doc.id,
                )
                return PreparedDocument(DocumentAction.SKIP, dest_id)
            data = outcome.data

        try:
            check_document_size(data, f"{target}/{dest_id}")
        except DocumentTooLargeError as e:
            if config.skip_oversized:
                ctx.output.log_info(
                    "Skipped oversized document", collection=collection_path, docId=doc.id
                )
                return PreparedDocument(DocumentAction.SKIP, dest_id)
            ctx.stats.errors += 1
            ctx.output.log_error(str(e), collection=collection_path, docId=doc.id)
            return PreparedDocument(DocumentAction.FAILED, dest_id)

        return PreparedDocument(DocumentAction.WRITE, dest_id, data)

    async def _transfer_batch(
        self,
        collection_path: str,
        target: str,
        documents: Sequence[DocumentSnapshot],
    ) -> List[DocumentSnapshot]:
        ctx: TransferContext = self._ctx
        config: TransferConfig = ctx.config
        batch: WriteBatch = ctx.destination.batch()
        completed_ids: List[str] = []
        staged: Dict[str, Dict[str, Any]] = {}
        descend: List[DocumentSnapshot] = []

        check_conflicts: bool = config.detect_conflicts and not config.dry_run
        captured: Dict[str, DocumentSnapshot] = {}
        if check_conflicts:
            captured = await ctx.destination.get_many(
                target,
                [dest_doc_id(d.id, config.id_prefix, config.id_suffix) for d in documents],
            )

        for doc in documents:
            prepared: PreparedDocument = self._prepare(doc, collection_path, target)
            if ctx.on_progress is not None:
                ctx.on_progress(1)

            if prepared.action is DocumentAction.RESUMED:
                descend.append(doc)
            elif prepared.action is DocumentAction.SKIP:
                completed_ids.append(doc.id)
            elif prepared.action is DocumentAction.WRITE:
                data: Dict[str, Any] = cast(Dict[str, Any], prepared.data)
                if not config.dry_run:
                    batch.set(target, prepared.dest_id, data, merge=config.merge)
                staged[prepared.dest_id] = data
                completed_ids.append(doc.id)
                descend.append(doc)
                ctx.stats.documents_transferred += 1
                ctx.output.log_info(
                    "Transferred document",
                    source=collection_path,
                    dest=target,
                    sourceDocId=doc.id,
                    destDocId=prepared.dest_id,
                )

        if check_conflicts and staged:
            await self._record_conflicts(target, captured, list(staged))

        if not config.dry_run and len(batch) > 0:
            await commit_batch(batch, config, ctx.rate_limiter, ctx.output, "commit")
            if config.verify_integrity and not config.merge:
                await self._verify_integrity(target, staged)

        if ctx.state_saver is not None and completed_ids:
            ctx.state_saver.mark_batch_completed(collection_path, completed_ids, ctx.stats)

        return descend

    async def _record_conflicts(
        self,
        target: str,
        captured: Dict[str, DocumentSnapshot],
        dest_ids: List[str],
    ) -> None:
        """Record staged documents whose version moved since it was captured."""
        ctx: TransferContext = self._ctx
        current: Dict[str, DocumentSnapshot] = await ctx.destination.get_many(target, dest_ids)
        for dest_id in dest_ids:
            before: Optional[DocumentSnapshot] = captured.get(dest_id)
            after: Optional[DocumentSnapshot] = current.get(dest_id)
            if before is None and after is None:
                continue
            if before is not None and after is not None:
                if before.update_time == after.update_time:
                    continue
                reason = "Document was modified during transfer"
            elif before is None:
                reason = "Document was created during transfer"
            else:
                reason = "Document was deleted during transfer"
            conflict: ConflictInfo = ConflictInfo(target, dest_id, reason)
            ctx.conflicts.append(conflict)
            ctx.stats.conflicts += 1
            ctx.output.log_error(
                "Conflict detected", collection=target, docId=dest_id, reason=reason
            )

    async def _verify_integrity(self, target: str, staged: Dict[str, Dict[str, Any]]) -> None:
        ctx: TransferContext = self._ctx
        written: Dict[str, DocumentSnapshot] = await ctx.destination.get_many(
            target, list(staged)
        )
        for dest_id, data in staged.items():
            snapshot: Optional[DocumentSnapshot] = written.get(dest_id)
            if snapshot is not None and hash_document_data(
                snapshot.data
            ) == hash_document_data(data):
                continue
            ctx.stats.integrity_errors += 1
            ctx.output.log_error(
                "Integrity check failed",
                collection=target,
                docId=dest_id,
                reason="missing" if snapshot is None else "hash mismatch",
            )


async def transfer_collection(ctx: TransferContext, collection_path: str) -> None:
    """
    Transfer one root collection and, if configured, its sub-collections.

    Errors are propagated once the retry policy is exhausted; the caller
    decides whether the run continues.
    """
    config: TransferConfig = ctx.config
    await walk_collection(
        ctx.source,
        collection_path,
        TransferVisitor(ctx),
        recursive=config.include_subcollections,
        max_depth=config.max_depth,
        exclude=config.exclude,
    )
