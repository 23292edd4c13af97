"""
docsync - Keeps a vector index in sync with a changing document corpus.

Modules:
    - config: Centralized configuration
    - errors: Exception taxonomy and error policies
    - models: Documents, ledger records, indexing stats
    - hasher: xxHash fingerprints and record keys
    - record_manager: SQLite ledger of indexed documents
    - embedder: sentence-transformers batch embedding
    - vectorstore: In-memory and Chroma write/delete adapters
    - indexer: Reconciliation engine (the core)
    - loader / splitter: Local document source and chunking
    - ingest: Main entry point
    - inspect_store: Collection listing tool

Sync Flow:
    Hash → Ledger lookup → Embed changed only → Ledger refresh → Cleanup

Usage:
    from docsync import index, SQLiteRecordManager

    record_manager = SQLiteRecordManager("local/docs", "records.db")
    record_manager.create_schema()
    stats = await index(docs, record_manager, vector_store, cleanup="full")
"""

from .indexer import Indexer, index
from .models import CleanupMode, Document, IndexingStats
from .record_manager import RecordManager, SQLiteRecordManager
from .vectorstore import ChromaVectorStore, InMemoryVectorStore, VectorStore

__all__ = [
    "ChromaVectorStore",
    "CleanupMode",
    "Document",
    "Indexer",
    "IndexingStats",
    "InMemoryVectorStore",
    "RecordManager",
    "SQLiteRecordManager",
    "VectorStore",
    "index",
]
