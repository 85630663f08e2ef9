# src/strata_sync/orchestrator.py
"""Core orchestration logic for a strata-sync run."""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from strata_sync.checkpoint import (
    CheckpointState,
    create_initial_checkpoint,
    delete_checkpoint,
    load_checkpoint,
    save_checkpoint,
    validate_for_resume,
)
from strata_sync.cleanup import clear_collection, delete_orphan_documents
from strata_sync.config import TransferConfig
from strata_sync.count import count_documents, verify_counts
from strata_sync.exceptions import ResumeError, StoreConnectionError
from strata_sync.firestore import describe_store_error, open_stores
from strata_sync.models import Stats, TransferResult, VerifyEntry
from strata_sync.output import TransferLog
from strata_sync.parallel import ParallelResult, run_bounded
from strata_sync.rate_limiter import RateLimiter, create_rate_limiter
from strata_sync.state import CompletedDocsCache, StateSaver
from strata_sync.store import DocumentSnapshot, DocumentStore
from strata_sync.transfer import TransferContext, dest_collection_path, transfer_collection
from strata_sync.transform import Skip, TransformFn, apply_transform, load_transform

logger: logging.Logger = logging.getLogger(__name__)

StoreFactory = Callable[[TransferConfig], Tuple[DocumentStore, DocumentStore]]


class TransferPipeline:
    """Sequences one transfer run from start to finish."""

    def __init__(
        self,
        config: TransferConfig,
        output: Optional[TransferLog] = None,
        store_factory: StoreFactory = open_stores,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (TransferConfig): The run configuration.
            output (TransferLog, optional): Output sink; a console-only sink
                is used if omitted.
            store_factory (StoreFactory): Builds the source and destination
                stores.
        """
        self._config: TransferConfig = config
        self._output: TransferLog = output or TransferLog(json_output=config.json_output)
        self._store_factory: StoreFactory = store_factory
        self._stats: Stats = Stats()
        self._state_saver: Optional[StateSaver] = None
        self._ctx: Optional[TransferContext] = None

    async def run(self) -> TransferResult:
        """
        Execute the whole run and report its outcome.

        Any failure is turned into an unsuccessful `TransferResult` carrying
        the error message and the counters accumulated so far.
        """
        config: TransferConfig = self._config
        started: float = time.monotonic()
        source: Optional[DocumentStore] = None
        destination: Optional[DocumentStore] = None
        result: TransferResult

        if config.dry_run:
            self._output.info("DRY RUN: no data will be written.")

        try:
            state: Optional[CheckpointState] = self._prepare_checkpoint()
            transform_fn: Optional[TransformFn] = None
            if config.transform:
                transform_fn = load_transform(config.transform)
                self._output.info(f"Loaded transform from {config.transform}")

            source, destination = self._store_factory(config)
            await self._check_connectivity(source, destination)

            if config.dry_run and transform_fn is not None and config.transform_samples != 0:
                await self._validate_transform(source, transform_fn)

            total: Optional[int] = await self._count_total(source)

            rate_limiter: Optional[RateLimiter] = create_rate_limiter(config.rate_limit)
            if rate_limiter is not None:
                self._output.info(f"Rate limiting enabled: {config.rate_limit} docs/s")

            if config.clear:
                await self._clear_destination(destination, rate_limiter)

            completed: Optional[CompletedDocsCache] = None
            if state is not None and config.dry_run:
                # Preview what a resume would do without touching the checkpoint
                completed = CompletedDocsCache(state.completed_docs)
            elif state is not None:
                self._state_saver = StateSaver(config.checkpoint_file, state)

            self._ctx = TransferContext(
                source=source,
                destination=destination,
                config=config,
                stats=self._stats,
                output=self._output,
                transform=transform_fn,
                state_saver=self._state_saver,
                rate_limiter=rate_limiter,
                completed=completed,
            )
            await self._transfer_with_progress(self._ctx, total)
            if self._state_saver is not None:
                self._state_saver.flush()

            if config.delete_missing:
                await self._sync_orphans(self._ctx)

            duration: float = time.monotonic() - started
            self._output.summary(self._stats, duration, config.dry_run)

            verify_result: Optional[Dict[str, VerifyEntry]] = None
            if config.verify and not config.dry_run:
                verify_result = await self._verify(source, destination)

            if not config.dry_run:
                delete_checkpoint(config.checkpoint_file)

            result = TransferResult(
                success=True,
                stats=self._stats,
                duration=time.monotonic() - started,
                dry_run=config.dry_run,
                verify_result=verify_result,
                conflicts=list(self._ctx.conflicts),
            )
        except Exception as e:
            self._output.error(f"Transfer failed: {e}")
            self._output.log_error("Transfer failed", error=str(e))
            logger.debug("Transfer failure details:", exc_info=True)
            result = TransferResult(
                success=False,
                stats=self._stats,
                duration=time.monotonic() - started,
                dry_run=config.dry_run,
                error=str(e),
                conflicts=list(self._ctx.conflicts) if self._ctx else [],
            )
        finally:
            if self._state_saver is not None:
                self._state_saver.flush()
            for store in (source, destination):
                if store is None:
                    continue
                try:
                    await store.close()
                except Exception as e:
                    logger.warning(f"Failed to close store '{store.name}': {e}")

        self._output.result(result)
        return result

    def _prepare_checkpoint(self) -> Optional[CheckpointState]:
        """
        Load the checkpoint to resume from, or create a fresh one.

        Returns:
            Optional[CheckpointState]: The live checkpoint; None on a dry
                run that is not resuming.

        Raises:
            ResumeError: If resuming and the checkpoint is missing or does not
                match the current configuration.
        """
        config: TransferConfig = self._config
        if config.resume:
            state: Optional[CheckpointState] = load_checkpoint(config.checkpoint_file)
            if state is None:
                raise ResumeError(f"No checkpoint found at {config.checkpoint_file}")
            problems: List[str] = validate_for_resume(state, config)
            if problems:
                raise ResumeError(
                    "Cannot resume: checkpoint does not match current config:\n"
                    + "\n".join(f"  - {problem}" for problem in problems)
                )
            self._stats = state.stats.copy()
            self._output.info(
                f"Resuming transfer from {state.started_at} "
                f"({state.completed_count} documents already completed)"
            )
            return state

        if config.dry_run:
            return None
        state = create_initial_checkpoint(config)
        save_checkpoint(config.checkpoint_file, state)
        return state

    async def _check_connectivity(
        self, source: DocumentStore, destination: DocumentStore
    ) -> None:
        """List root collections on both stores before any transfer work."""
        for role, store in (("source", source), ("destination", destination)):
            try:
                await store.list_collections()
            except Exception as e:
                info = describe_store_error(e)
                raise StoreConnectionError(
                    f"Cannot reach {role} '{store.name}': {info}"
                ) from e
        self._output.info("Connected to source and destination.")

    async def _validate_transform(
        self, source: DocumentStore, transform_fn: TransformFn
    ) -> None:
        """Run the transform over sample documents and report the outcome."""
        config: TransferConfig = self._config
        sample_limit: int = max(config.transform_samples, 0)
        tested: int = 0
        skipped: int = 0
        failed: int = 0
        for collection in config.collections:
            documents: List[DocumentSnapshot] = await source.get_documents(
                collection, filters=config.where, limit=sample_limit
            )
            for doc in documents:
                tested += 1
                try:
                    outcome = apply_transform(transform_fn, doc.data, doc.id, doc.path)
                except Exception as e:
                    failed += 1
                    self._output.error(f"Transform failed on {doc.path}: {e}")
                    continue
                if isinstance(outcome, Skip):
                    skipped += 1
        self._output.info(
            f"Transform validated on {tested} documents "
            f"({skipped} skipped, {failed} failed)"
        )
        self._output.log_info(
            "Transform validation", tested=tested, skipped=skipped, failed=failed
        )

    async def _count_total(self, source: DocumentStore) -> Optional[int]:
        """
        Count the documents to transfer for the progress bar.

        Counting is best-effort; a failure leaves the total unknown.
        """
        total: int = 0
        for collection in self._config.collections:
            try:
                total += await count_documents(source, collection, self._config)
            except Exception as e:
                logger.warning(f"Could not count documents in '{collection}': {e}")
                return None
        self._output.info(f"Found {total} documents to transfer.")
        return total

    async def _clear_destination(
        self, destination: DocumentStore, rate_limiter: Optional[RateLimiter]
    ) -> None:
        config: TransferConfig = self._config
        for collection in config.collections:
            target: str = dest_collection_path(collection, config.rename_collection)
            deleted: int = await clear_collection(
                destination,
                target,
                config,
                self._output,
                recursive=config.include_subcollections,
                rate_limiter=rate_limiter,
                max_depth=config.max_depth,
            )
            self._stats.documents_deleted += deleted
            self._output.info(f"Cleared {deleted} documents from '{target}'")

    async def _transfer_with_progress(
        self, ctx: TransferContext, total: Optional[int]
    ) -> None:
        progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            transient=True,
            disable=not self._output.console_enabled,
        )
        with progress:
            task_id: TaskID = progress.add_task("Transferring...", total=total)
            ctx.on_progress = lambda count: progress.advance(task_id, count)
            await self._transfer_collections(ctx)
            ctx.on_progress = None

    async def _transfer_collections(self, ctx: TransferContext) -> None:
        """
        Transfer every configured collection.

        A failing collection is counted as an error and the remaining
        collections are still transferred.
        """
        config: TransferConfig = self._config
        if config.parallel > 1:
            self._output.info(
                f"Transferring {len(config.collections)} collections "
                f"with parallelism {config.parallel}"
            )
            outcome: ParallelResult[str] = await run_bounded(
                config.collections,
                config.parallel,
                lambda collection: self._transfer_one(ctx, collection),
            )
            for error in outcome.errors:
                self._stats.errors += 1
                self._output.error(f"Parallel transfer error: {error}")
                self._output.log_error("Parallel transfer error", error=str(error))
            return

        for collection in config.collections:
            try:
                await self._transfer_one(ctx, collection)
            except Exception as e:
                self._stats.errors += 1
                self._output.error(f"Transfer failed for collection '{collection}': {e}")
                self._output.log_error(
                    "Collection transfer failed", collection=collection, error=str(e)
                )

    async def _transfer_one(self, ctx: TransferContext, collection: str) -> str:
        self._output.info(f"Transferring collection '{collection}'...")
        await transfer_collection(ctx, collection)
        return collection

    async def _sync_orphans(self, ctx: TransferContext) -> None:
        for collection in self._config.collections:
            deleted: int = await delete_orphan_documents(ctx, collection)
            self._stats.documents_deleted += deleted
            if deleted:
                self._output.info(f"Deleted {deleted} orphan documents for '{collection}'")

    async def _verify(
        self, source: DocumentStore, destination: DocumentStore
    ) -> Dict[str, VerifyEntry]:
        self._output.info("Verifying transfer...")
        verify_result: Dict[str, VerifyEntry] = await verify_counts(
            source, destination, self._config
        )
        mismatched: List[str] = [
            name for name, entry in verify_result.items() if not entry.match
        ]
        if mismatched:
            self._output.warning(f"Count mismatch in: {', '.join(mismatched)}")
        else:
            self._output.info("Verification passed: all counts match.")
        self._output.log_info(
            "Verification",
            collections={name: entry.to_dict() for name, entry in verify_result.items()},
        )
        return verify_result


async def run_transfer(
    config: TransferConfig,
    output: Optional[TransferLog] = None,
    store_factory: StoreFactory = open_stores,
) -> TransferResult:
    """
    Run a transfer described by `config`.

    Args:
        config (TransferConfig): The run configuration.
        output (TransferLog, optional): Output sink.
        store_factory (StoreFactory): Builds the source and destination
            stores; tests pass in-memory fakes.

    Returns:
        TransferResult: The outcome of the run.
    """
    pipeline: TransferPipeline = TransferPipeline(config, output, store_factory)
    return await pipeline.run()
