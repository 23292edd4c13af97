"""
Test Configuration - Shared fixtures for sync engine tests.

Uses pytest fixtures to create isolated test environments: a temp
SQLite ledger, an in-memory vector store with a deterministic embedder,
and spy/flaky stores for failure-mode tests.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List, Optional, Sequence, Tuple

import numpy as np
import pytest
import xxhash

from docsync.config import IndexerConfig, set_config
from docsync.errors import TransientWriteError
from docsync.record_manager import SQLiteRecordManager
from docsync.vectorstore import InMemoryVectorStore


class FakeEmbedder:
    """Deterministic 8-dim vectors seeded from the text."""

    dimension = 8

    def __init__(self):
        self.calls: List[List[str]] = []

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        self.calls.append(list(texts))
        vectors = [
            np.random.default_rng(xxhash.xxh64_intdigest(t.encode("utf-8"))).random(self.dimension)
            for t in texts
        ]
        return np.array(vectors, dtype=np.float32).reshape(len(texts), self.dimension)


class SpyVectorStore(InMemoryVectorStore):
    """In-memory store that records every call in a shared event log."""

    def __init__(self, embedder, events: List[Tuple[str, List[str]]]):
        super().__init__(embedder)
        self.events = events

    @property
    def added_ids(self) -> List[str]:
        return [k for op, keys in self.events if op == "vector add" for k in keys]

    @property
    def write_count(self) -> int:
        return sum(1 for op, _ in self.events if op.startswith("vector"))

    def add_documents(self, documents, ids):
        self.events.append(("vector add", list(ids)))
        super().add_documents(documents, ids)

    def delete(self, ids):
        self.events.append(("vector delete", list(ids)))
        super().delete(ids)


class SpyRecordManager(SQLiteRecordManager):
    """SQLite ledger that logs deletions into the shared event log."""

    def __init__(self, namespace, db_path, events: List[Tuple[str, List[str]]]):
        super().__init__(namespace, db_path)
        self.events = events

    def delete_keys(self, keys):
        self.events.append(("ledger delete", list(keys)))
        return super().delete_keys(keys)


class FlakyVectorStore(InMemoryVectorStore):
    """
    Fails the first `failures` add calls with a transient error.

    With `crash_on` set, that add attempt (1-based) raises a plain
    RuntimeError instead, like an embedding model falling over.
    """

    def __init__(
        self,
        embedder,
        failures: int = 1,
        fail_deletes: bool = False,
        crash_on: Optional[int] = None,
    ):
        super().__init__(embedder)
        self.failures = failures
        self.fail_deletes = fail_deletes
        self.crash_on = crash_on
        self.add_attempts = 0

    def add_documents(self, documents, ids):
        self.add_attempts += 1
        if self.add_attempts == self.crash_on:
            raise RuntimeError("model crashed")
        if self.failures > 0:
            self.failures -= 1
            raise TransientWriteError("vector add", ids, RuntimeError("connection reset"))
        super().add_documents(documents, ids)

    def delete(self, ids: Sequence[str]):
        if self.fail_deletes:
            raise TransientWriteError("vector delete", ids, RuntimeError("connection reset"))
        super().delete(ids)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="docsync_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> IndexerConfig:
    """Create an isolated test configuration."""
    config = IndexerConfig(
        collection_name="test",
        roots=[temp_dir / "docs"],
        record_db_path=temp_dir / "records.db",
        chroma_path=temp_dir / "chroma",
        hasher_concurrency=2,
        write_concurrency=2,
        batch_size=2,
        cleanup_batch_size=2,
        max_write_retries=2,
        retry_backoff_seconds=0.0,
        chunk_size=100,
        chunk_overlap=20,
    )
    set_config(config)
    return config


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def record_manager(test_config: IndexerConfig) -> Generator[SQLiteRecordManager, None, None]:
    """Ledger with schema created."""
    manager = SQLiteRecordManager(test_config.namespace, test_config.record_db_path)
    manager.create_schema()
    yield manager
    manager.close()


@pytest.fixture
def vector_store(embedder: FakeEmbedder) -> InMemoryVectorStore:
    return InMemoryVectorStore(embedder)


@pytest.fixture
def flaky_store(embedder: FakeEmbedder) -> Callable[..., FlakyVectorStore]:
    """Factory for FlakyVectorStore sharing the test embedder."""
    def make(**kwargs) -> FlakyVectorStore:
        return FlakyVectorStore(embedder, **kwargs)
    return make


@pytest.fixture
def events() -> List[Tuple[str, List[str]]]:
    return []


@pytest.fixture
def spy_store(embedder: FakeEmbedder, events) -> SpyVectorStore:
    return SpyVectorStore(embedder, events)


@pytest.fixture
def spy_record_manager(test_config: IndexerConfig, events) -> Generator[SpyRecordManager, None, None]:
    manager = SpyRecordManager(test_config.namespace, test_config.record_db_path, events)
    manager.create_schema()
    yield manager
    manager.close()


@pytest.fixture
def sample_files(temp_dir: Path) -> dict[str, Path]:
    """Create sample files for loader and ingest tests."""
    docs = temp_dir / "docs"
    docs.mkdir()
    files = {}

    guide = docs / "guide.md"
    guide.write_text("# Guide\n\n" + "Indexing keeps vectors in sync. " * 10)
    files["guide"] = guide

    notes = docs / "notes.txt"
    notes.write_text("Short notes file.")
    files["notes"] = notes

    nested_dir = docs / "api" / "v1"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "reference.html"
    nested.write_text("<p>API reference</p>")
    files["nested"] = nested

    # Hidden file (should be skipped)
    hidden = docs / ".hidden.md"
    hidden.write_text("This should be skipped.")
    files["hidden"] = hidden

    # Binary extension (should be skipped)
    image = docs / "logo.png"
    image.write_bytes(b"\x89PNG\r\n")
    files["image"] = image

    # Node modules dir (should be skipped)
    node_modules = docs / "node_modules"
    node_modules.mkdir()
    (node_modules / "readme.md").write_text("vendored")
    files["node_modules"] = node_modules / "readme.md"

    return files
