"""
Ingest - Main entry point for syncing a corpus into the vector store.

Pipeline:
    Load (local files) → Split (sliding window) → Index (hash, ledger, Chroma)

Only the Index stage touches the vector store, and only for documents
whose fingerprint is new or changed.
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .config import IndexerConfig, get_config
from .embedder import get_embedder
from .errors import IndexingError, IndexingFailedError, NoDocumentsError
from .indexer import Indexer
from .loader import Loader
from .models import Document, IndexingStats
from .record_manager import RecordManager, SQLiteRecordManager
from .splitter import TextSplitter
from .vectorstore import ChromaVectorStore, VectorStore


logger = logging.getLogger(__name__)

# Fields every stored chunk must carry for retrieval-time formatting
REQUIRED_METADATA = ("source", "title")


def fill_required_metadata(documents: List[Document]) -> List[Document]:
    """Default missing source/title metadata to empty strings."""
    filled = []
    for doc in documents:
        missing = {k: "" for k in REQUIRED_METADATA if not doc.metadata.get(k)}
        if missing:
            doc = Document(page_content=doc.page_content, metadata={**doc.metadata, **missing}, id=doc.id)
        filled.append(doc)
    return filled


class Ingestor:
    """
    Wires the loader, splitter, record ledger and vector store together.

    Collaborators can be injected for testing; otherwise they are built
    from the configuration.
    """

    def __init__(
        self,
        config: Optional[IndexerConfig] = None,
        record_manager: Optional[RecordManager] = None,
        vector_store: Optional[VectorStore] = None,
        loader: Optional[Loader] = None,
    ):
        self.config = (config or get_config()).validate()
        self._loader = loader or Loader(self.config)
        self._splitter = TextSplitter(config=self.config)
        self._record_manager = record_manager or SQLiteRecordManager(
            self.config.namespace, self.config.record_db_path
        )
        self._vector_store = vector_store or ChromaVectorStore(
            self.config.collection_name,
            get_embedder(self.config),
            path=self.config.chroma_path,
            host=self.config.chroma_host,
            port=self.config.chroma_port,
        )
        self._indexer = Indexer(self._record_manager, self._vector_store, self.config)

    async def run(self, roots: Optional[List[Path]] = None) -> IndexingStats:
        """
        Load, split and index the corpus.

        Raises:
            NoDocumentsError: the loader found nothing under the roots
        """
        start_time = time.monotonic()

        logger.info("Phase 1/3: Loading documents...")
        documents = await self._loader.load(roots)
        if not documents:
            raise NoDocumentsError(
                f"No documents loaded from {[str(r) for r in (roots or self.config.roots)]}"
            )

        logger.info("Phase 2/3: Splitting documents...")
        chunks = fill_required_metadata(self._splitter.split_documents(documents))
        logger.info(f"Split {len(documents)} documents into {len(chunks)} chunks")

        logger.info("Phase 3/3: Indexing...")
        self._record_manager.create_schema()
        stats = await self._indexer.index(
            chunks,
            cleanup=self.config.cleanup_mode,
            source_id_key=self.config.source_id_key,
            force_update=self.config.force_update,
        )

        stats.duration_seconds = time.monotonic() - start_time
        return stats

    def close(self):
        """Clean up resources."""
        self._loader.close()
        self._indexer.close()
        self._record_manager.close()


async def ingest_docs(
    roots: Optional[List[Path]] = None,
    config: Optional[IndexerConfig] = None,
) -> IndexingStats:
    """
    Convenience function to run a full ingest.

    Usage:
        stats = await ingest_docs([Path("docs")])
        print(stats)
    """
    ingestor = Ingestor(config)
    try:
        return await ingestor.run(roots)
    finally:
        ingestor.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Sync local documents into a vector store")
    parser.add_argument("--roots", nargs="+", help="Directories to index")
    parser.add_argument("--collection", help="Collection name (overrides COLLECTION_NAME)")
    parser.add_argument(
        "--cleanup", choices=["none", "incremental", "full"],
        help="Cleanup mode (overrides INDEXER_CLEANUP)",
    )
    parser.add_argument("--force", action="store_true", help="Re-embed unchanged documents")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    roots = None
    if args.roots:
        roots = [Path(r).expanduser().resolve() for r in args.roots]

    try:
        config = IndexerConfig.from_env()
        if args.collection:
            config.collection_name = args.collection
        if args.cleanup:
            config.cleanup_mode = args.cleanup
        if args.force:
            config.force_update = True

        stats = asyncio.run(ingest_docs(roots, config))
    except IndexingFailedError as e:
        logger.error(f"Failed to ingest docs: {e}")
        if e.stats is not None:
            logger.error(f"Partial stats: {e.stats.to_dict()}")
        return 1
    except IndexingError as e:
        logger.error(f"Failed to ingest docs: {e}")
        return 1
    except Exception:
        logger.exception("Failed to ingest docs")
        return 1

    logger.info(f"Indexing stats: {stats.to_dict()}")
    print(f"\n{stats}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
