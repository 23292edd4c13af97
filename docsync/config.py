"""
Indexing Configuration - Centralized settings for the sync engine.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability. Connection settings are checked by
validate() so a bad deployment fails before any document is touched.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

from .errors import ConfigurationError


_TRUE_VALUES = {"1", "true", "yes", "on"}
_CLEANUP_MODES = {"none", "incremental", "full"}

MEMORY_DB = ":memory:"


@dataclass
class IndexerConfig:
    """
    Configuration for the indexing system.

    Local state (record ledger, Chroma persistence) defaults to ~/.docsync.
    Batch sizes are tuned for a local Chroma instance.
    """

    # --- Collection ---
    collection_name: str = ""

    # --- Paths ---
    roots: List[Path] = field(default_factory=list)
    record_db_path: Path | str = field(default_factory=lambda: Path.home() / ".docsync" / "records.db")
    chroma_path: Optional[Path] = field(default_factory=lambda: Path.home() / ".docsync" / "chroma")
    chroma_host: Optional[str] = None
    chroma_port: int = 8000

    # --- Indexing behaviour ---
    cleanup_mode: str = "full"
    source_id_key: str = "source"
    force_update: bool = False
    hash_metadata: bool = True

    # --- Concurrency Limits ---
    hasher_concurrency: int = 8     # Parallel xxHash operations
    write_concurrency: int = 4      # Vector store write batches in flight
    batch_size: int = 100           # Documents per vector store / ledger write
    cleanup_batch_size: int = 1000  # Keys per delete round
    embedder_batch_size: int = 64

    # --- Retries ---
    max_write_retries: int = 3
    retry_backoff_seconds: float = 0.5

    # --- Embedding ---
    embedding_model: str = "all-MiniLM-L6-v2"
    use_onnx: bool = False

    # --- Chunking ---
    chunk_size: int = 4000
    chunk_overlap: int = 200

    # --- Loader ---
    skip_dirs: Set[str] = field(default_factory=lambda: {
        ".git", ".svn", ".hg",
        "node_modules", "__pycache__", ".venv", "venv", "env",
        "build", "dist", "target", "out", ".next",
        ".idea", ".vscode", ".cache",
    })

    text_extensions: Set[str] = field(default_factory=lambda: {
        ".txt", ".md", ".mdx", ".rst", ".html", ".htm",
        ".py", ".js", ".ts", ".tsx", ".jsx", ".json",
        ".yaml", ".yml", ".toml", ".csv",
    })

    def __post_init__(self):
        """Ensure all paths are absolute. Directories are created by their owners."""
        if str(self.record_db_path) != MEMORY_DB:
            self.record_db_path = Path(self.record_db_path).expanduser().resolve()
        if self.chroma_path is not None:
            self.chroma_path = Path(self.chroma_path).expanduser().resolve()
        self.roots = [Path(p).expanduser().resolve() for p in self.roots]

    @property
    def namespace(self) -> str:
        """Record ledger partition for this collection."""
        return f"local/{self.collection_name}"

    def validate(self) -> "IndexerConfig":
        """
        Check settings needed before any document is processed.

        Raises:
            ConfigurationError: if a required value is missing or invalid
        """
        if not self.collection_name:
            raise ConfigurationError(
                "COLLECTION_NAME must be set in the environment"
            )
        if self.cleanup_mode not in _CLEANUP_MODES:
            raise ConfigurationError(
                f"Invalid cleanup mode {self.cleanup_mode!r}, "
                f"expected one of {sorted(_CLEANUP_MODES)}"
            )
        if not self.source_id_key:
            raise ConfigurationError("source_id_key must not be empty")
        if self.chroma_host is None and self.chroma_path is None:
            raise ConfigurationError(
                "Either CHROMA_HOST or CHROMA_PATH must be set"
            )
        for name in ("batch_size", "cleanup_batch_size", "hasher_concurrency", "write_concurrency"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        if self.max_write_retries < 0:
            raise ConfigurationError("max_write_retries must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError("chunk_overlap must be smaller than chunk_size")
        return self

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            COLLECTION_NAME: Vector store collection (required for ingest)
            RECORD_MANAGER_DB_URL: SQLite ledger path, optionally sqlite:/// prefixed
            CHROMA_PATH: Local Chroma persistence directory
            CHROMA_HOST / CHROMA_PORT: Remote Chroma server
            EMBEDDING_MODEL: sentence-transformers model name
            FORCE_UPDATE: Re-embed documents even when unchanged
            INDEXER_CLEANUP: none | incremental | full
            INDEXER_SOURCE_ID_KEY: Metadata field identifying the source
            INDEXER_ROOTS: Comma-separated list of paths to load
            INDEXER_BATCH_SIZE: Documents per write batch
            INDEXER_CLEANUP_BATCH_SIZE: Keys per delete round
            INDEXER_HASHER_CONCURRENCY: Parallel hashing workers
            INDEXER_WRITE_CONCURRENCY: Parallel write batches
            INDEXER_MAX_WRITE_RETRIES: Attempts per failed write batch
        """
        config = cls()

        if collection := os.environ.get("COLLECTION_NAME"):
            config.collection_name = collection

        if db_url := os.environ.get("RECORD_MANAGER_DB_URL"):
            config.record_db_path = _strip_sqlite_scheme(db_url)

        if chroma_path := os.environ.get("CHROMA_PATH"):
            config.chroma_path = Path(chroma_path)

        if chroma_host := os.environ.get("CHROMA_HOST"):
            config.chroma_host = chroma_host

        if model := os.environ.get("EMBEDDING_MODEL"):
            config.embedding_model = model

        if cleanup := os.environ.get("INDEXER_CLEANUP"):
            config.cleanup_mode = cleanup.strip().lower()

        if source_id_key := os.environ.get("INDEXER_SOURCE_ID_KEY"):
            config.source_id_key = source_id_key

        if roots := os.environ.get("INDEXER_ROOTS"):
            config.roots = [Path(p.strip()) for p in roots.split(",") if p.strip()]

        config.force_update = os.environ.get("FORCE_UPDATE", "").strip().lower() in _TRUE_VALUES

        config.chroma_port = _int_env("CHROMA_PORT", config.chroma_port)
        config.batch_size = _int_env("INDEXER_BATCH_SIZE", config.batch_size)
        config.cleanup_batch_size = _int_env("INDEXER_CLEANUP_BATCH_SIZE", config.cleanup_batch_size)
        config.hasher_concurrency = _int_env("INDEXER_HASHER_CONCURRENCY", config.hasher_concurrency)
        config.write_concurrency = _int_env("INDEXER_WRITE_CONCURRENCY", config.write_concurrency)
        config.max_write_retries = _int_env("INDEXER_MAX_WRITE_RETRIES", config.max_write_retries)

        config.__post_init__()
        return config


def _strip_sqlite_scheme(url: str) -> str:
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    if "://" in url:
        raise ConfigurationError(
            f"Unsupported record manager URL {url!r}: only sqlite:/// is supported"
        )
    return url


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


# Singleton default config
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
