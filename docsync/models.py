"""
Data Models - Type definitions for the sync engine.

These dataclasses represent the data flowing between the hasher, the
record ledger, the vector store and the indexer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class CleanupMode(Enum):
    """How stale records are removed after a run."""
    NONE = "none"                # Never delete; caller prunes
    INCREMENTAL = "incremental"  # Delete stale chunks of sources seen in this run
    FULL = "full"                # Delete everything not seen in this run

    @classmethod
    def parse(cls, value: "CleanupMode | str | None") -> "CleanupMode":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class Document:
    """
    A unit of content to be indexed.

    `metadata` must carry the source id field (usually "source") that
    groups chunks cut from the same original document. `id` is an optional
    explicit key; when absent the key is derived from the content hash.
    """
    page_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass(frozen=True)
class HashedDocument:
    """
    A Document with its fingerprint and ledger identity.
    """
    document: Document
    content_hash: str          # XXH3-128 of the text
    metadata_hash: str         # XXH3-128 of canonical JSON metadata
    hash: str                  # Fingerprint over both
    key: str                   # Record key and vector store id
    group_id: str              # Value of the source id field

    @property
    def page_content(self) -> str:
        return self.document.page_content

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.document.metadata


@dataclass(frozen=True)
class Record:
    """
    A row of the record ledger.

    One record per indexed document key within a namespace.
    """
    key: str
    group_id: Optional[str]
    hash: str
    updated_at: float


@dataclass
class IndexingStats:
    """Statistics from an indexing run."""
    num_added: int = 0
    num_updated: int = 0
    num_skipped: int = 0
    num_deleted: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_added": self.num_added,
            "num_updated": self.num_updated,
            "num_skipped": self.num_skipped,
            "num_deleted": self.num_deleted,
        }

    def __str__(self) -> str:
        return (
            f"Added {self.num_added}, "
            f"updated {self.num_updated}, "
            f"skipped {self.num_skipped}, "
            f"deleted {self.num_deleted} "
            f"in {self.duration_seconds:.1f}s"
        )
