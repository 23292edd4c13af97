"""
Indexer - Reconciles a document batch against the record ledger.

For every document in the batch:
- unchanged (same key, same hash): skip embedding, refresh the timestamp
- changed (same key, new hash) or forced: re-add to the vector store
- unknown key: add to the vector store
then, depending on the cleanup mode, delete records (and vectors) that
were not refreshed by this run.

Deletion always hits the vector store before the ledger, so a crash
mid-cleanup can leave a record without a vector (retried next run) but
never a vector nobody tracks.
"""

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from .config import get_config, IndexerConfig
from .errors import (
    ErrorAction, IndexingFailedError, TransientWriteError, ValidationError, handle_error,
)
from .hasher import Hasher, get_group_id
from .models import CleanupMode, Document, HashedDocument, IndexingStats, Record
from .record_manager import RecordManager, batched, iter_group_chunks
from .vectorstore import VectorStore


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _RunState:
    """Mutable bookkeeping shared by the write batches of one run."""
    stats: IndexingStats
    run_start: float
    force_update: bool
    succeeded_keys: List[str] = field(default_factory=list)
    group_ids: Set[str] = field(default_factory=set)


class Indexer:
    """
    Sync engine between a document batch, a RecordManager and a VectorStore.

    At most one run per namespace should be in flight; the ledger
    timestamps are the only notion of "seen in this run".
    """

    def __init__(
        self,
        record_manager: RecordManager,
        vector_store: VectorStore,
        config: IndexerConfig | None = None,
    ):
        self.config = config or get_config()
        self.record_manager = record_manager
        self.vector_store = vector_store
        self._hasher = Hasher(self.config)
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.write_concurrency,
                thread_name_prefix="writer"
            )
        return self._executor

    async def index(
        self,
        documents: Iterable[Document],
        cleanup: CleanupMode | str | None = None,
        source_id_key: Optional[str] = None,
        force_update: Optional[bool] = None,
        batch_size: Optional[int] = None,
        cleanup_batch_size: Optional[int] = None,
    ) -> IndexingStats:
        """
        Index a batch of documents.

        Args:
            documents: The batch. Under FULL cleanup it must be the whole corpus.
            cleanup: none | incremental | full (default: config.cleanup_mode)
            source_id_key: Metadata field identifying the source document
            force_update: Re-add documents even when their hash is unchanged
            batch_size: Documents per vector store / ledger write
            cleanup_batch_size: Keys per delete round

        Returns:
            Counts of added, updated, skipped and deleted documents

        Raises:
            ValidationError: a document lacks the source id field (nothing written)
            IndexingFailedError: a write failed or kept failing; carries partial stats
        """
        mode = CleanupMode.parse(cleanup if cleanup is not None else self.config.cleanup_mode)
        source_id_key = source_id_key or self.config.source_id_key
        force = self.config.force_update if force_update is None else force_update
        batch_size = batch_size or self.config.batch_size
        cleanup_batch_size = cleanup_batch_size or self.config.cleanup_batch_size
        if batch_size < 1 or cleanup_batch_size < 1:
            raise ValidationError("batch sizes must be at least 1")

        documents = list(documents)
        namespace = self.record_manager.namespace
        start_time = time.monotonic()

        # Fail before any side effect
        self._validate(documents, source_id_key)

        logger.info(
            f"Indexing {len(documents)} documents into {namespace} "
            f"(cleanup={mode.value}, force_update={force})"
        )

        run_start = await self._run_with_retries("ledger clock", [], self.record_manager.get_time)
        state = _RunState(stats=IndexingStats(), run_start=run_start, force_update=force)

        hashed = await self._hasher.hash_documents(documents, namespace, source_id_key)
        unique, duplicates = self._deduplicate(hashed)
        state.stats.num_skipped += duplicates

        # Write phase: every batch refreshes its records before any cleanup runs
        batches = list(batched(unique, batch_size))
        semaphore = asyncio.Semaphore(self.config.write_concurrency)

        async def _bounded(batch: Sequence[HashedDocument]) -> None:
            async with semaphore:
                await self._write_batch(batch, state)

        results = await asyncio.gather(
            *(_bounded(batch) for batch in batches),
            return_exceptions=True,
        )
        self._raise_for_failures(results, batches, state, start_time)

        # Cleanup phase
        if mode is CleanupMode.FULL:
            await self._cleanup(state, cleanup_batch_size, group_ids=None, start_time=start_time)
        elif mode is CleanupMode.INCREMENTAL:
            await self._cleanup(state, cleanup_batch_size, group_ids=state.group_ids, start_time=start_time)

        state.stats.duration_seconds = time.monotonic() - start_time
        logger.info(f"Indexing complete for {namespace}: {state.stats}")

        return state.stats

    def _validate(self, documents: Sequence[Document], source_id_key: str) -> None:
        for position, document in enumerate(documents):
            try:
                get_group_id(document, source_id_key, position)
            except ValidationError as e:
                handle_error(e, position, "validate")
                raise

    def _deduplicate(self, hashed: Sequence[HashedDocument]) -> Tuple[List[HashedDocument], int]:
        """Keep the first document per key, preserving batch order."""
        seen: Set[str] = set()
        unique: List[HashedDocument] = []
        for item in hashed:
            if item.key in seen:
                continue
            seen.add(item.key)
            unique.append(item)
        duplicates = len(hashed) - len(unique)
        if duplicates:
            logger.debug(f"Dropped {duplicates} duplicate documents from the batch")
        return unique, duplicates

    async def _write_batch(self, batch: Sequence[HashedDocument], state: _RunState) -> None:
        keys = [item.key for item in batch]

        stored = await self._run_with_retries("ledger lookup", keys, self.record_manager.get_hashes, keys)

        to_write: List[HashedDocument] = []
        added = updated = skipped = 0
        for item in batch:
            previous = stored.get(item.key)
            if previous is None:
                to_write.append(item)
                added += 1
            elif previous != item.hash or state.force_update:
                to_write.append(item)
                updated += 1
            else:
                skipped += 1

        if to_write:
            await self._run_with_retries(
                "vector add",
                [item.key for item in to_write],
                self.vector_store.add_documents,
                [item.document for item in to_write],
                [item.key for item in to_write],
            )

        now = await self._run_with_retries("ledger clock", keys, self.record_manager.get_time)
        now = max(now, state.run_start)
        records = [Record(item.key, item.group_id, item.hash, now) for item in batch]
        await self._run_with_retries("ledger upsert", keys, self.record_manager.upsert, records)

        state.stats.num_added += added
        state.stats.num_updated += updated
        state.stats.num_skipped += skipped
        state.succeeded_keys.extend(keys)
        state.group_ids.update(item.group_id for item in batch)

    async def _cleanup(
        self,
        state: _RunState,
        cleanup_batch_size: int,
        group_ids: Optional[Set[str]],
        start_time: float,
    ) -> None:
        """Delete records not refreshed since run_start, vector store first."""
        if group_ids is None:
            scopes: List[Optional[List[str]]] = [None]
        else:
            scopes = list(iter_group_chunks(group_ids))

        for scope in scopes:
            while True:
                stale = await self._run_with_retries(
                    "ledger list",
                    [],
                    functools.partial(
                        self.record_manager.list_keys,
                        before=state.run_start,
                        group_ids=scope,
                        limit=cleanup_batch_size,
                    ),
                )
                if not stale:
                    break

                try:
                    await self._run_with_retries("vector delete", stale, self.vector_store.delete, stale)
                    await self._run_with_retries("ledger delete", stale, self.record_manager.delete_keys, stale)
                except Exception as e:
                    state.stats.duration_seconds = time.monotonic() - start_time
                    raise IndexingFailedError(
                        f"Cleanup failed after {state.stats.num_deleted} deletions: {e}",
                        stats=state.stats,
                        succeeded_keys=state.succeeded_keys,
                        failed_keys=stale,
                    ) from e

                state.stats.num_deleted += len(stale)
                logger.debug(f"Deleted {len(stale)} stale records")

    async def _run_with_retries(self, stage: str, keys: Sequence[str], func: Callable[..., T], *args) -> T:
        """
        Run a blocking store call in the writer pool.

        TransientWriteError is retried with linear backoff up to
        config.max_write_retries times, then re-raised.
        """
        loop = asyncio.get_running_loop()
        attempts = self.config.max_write_retries + 1
        call = functools.partial(func, *args)

        for attempt in range(1, attempts):
            try:
                return await loop.run_in_executor(self._get_executor(), call)
            except TransientWriteError as e:
                action = handle_error(e, f"{len(keys)} keys (attempt {attempt}/{attempts})", stage)
                if action is not ErrorAction.RETRY:
                    raise
                await asyncio.sleep(self.config.retry_backoff_seconds * attempt)

        # Last attempt: failures propagate to the caller
        return await loop.run_in_executor(self._get_executor(), call)

    def _raise_for_failures(
        self,
        results: Sequence[object],
        batches: Sequence[Sequence[HashedDocument]],
        state: _RunState,
        start_time: float,
    ) -> None:
        failed_keys: List[str] = []
        first_error: Optional[BaseException] = None
        for batch, result in zip(batches, results):
            if not isinstance(result, BaseException):
                continue
            if not isinstance(result, Exception):
                # Cancellation and interpreter exits are not write failures
                raise result
            failed_keys.extend(item.key for item in batch)
            first_error = first_error or result

        if first_error is None:
            return

        state.stats.duration_seconds = time.monotonic() - start_time
        logger.error(
            f"{len(failed_keys)} documents failed to index, "
            f"{len(state.succeeded_keys)} succeeded; cleanup skipped"
        )
        raise IndexingFailedError(
            f"Write phase failed for {len(failed_keys)} documents: {first_error}",
            stats=state.stats,
            succeeded_keys=state.succeeded_keys,
            failed_keys=failed_keys,
        ) from first_error

    def close(self):
        """Shutdown worker pools."""
        self._hasher.close()
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


async def index(
    documents: Iterable[Document],
    record_manager: RecordManager,
    vector_store: VectorStore,
    cleanup: CleanupMode | str | None = None,
    source_id_key: Optional[str] = None,
    force_update: Optional[bool] = None,
    batch_size: Optional[int] = None,
    config: IndexerConfig | None = None,
) -> IndexingStats:
    """
    Convenience function to run one reconciliation.

    Usage:
        stats = await index(docs, record_manager, vector_store, cleanup="full")
        print(stats)
    """
    indexer = Indexer(record_manager, vector_store, config)
    try:
        return await indexer.index(
            documents,
            cleanup=cleanup,
            source_id_key=source_id_key,
            force_update=force_update,
            batch_size=batch_size,
        )
    finally:
        indexer.close()
