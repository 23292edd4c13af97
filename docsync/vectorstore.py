"""
Vector Store - Write/delete surface over the concrete vector database.

The indexer only ever adds documents under explicit ids and deletes by id;
it never searches. Two implementations are provided:
- InMemoryVectorStore: numpy vectors in a dict (tests, small corpora)
- ChromaVectorStore: Chroma collection, embeddings computed client-side
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .errors import EmbeddingError, TransientWriteError, ValidationError
from .models import Document


logger = logging.getLogger(__name__)


class SupportsEmbedding(Protocol):
    def embed_texts(self, texts: List[str]) -> np.ndarray: ...


class VectorStore(ABC):
    """Capability surface the indexer writes through."""

    @abstractmethod
    def add_documents(self, documents: Sequence[Document], ids: Sequence[str]) -> None:
        """Store documents under explicit ids; re-adding an id overwrites."""

    @abstractmethod
    def delete(self, ids: Sequence[str]) -> None:
        """Remove vectors. Unknown ids are a no-op."""


def _check_ids(documents: Sequence[Document], ids: Sequence[str]) -> None:
    if len(documents) != len(ids):
        raise ValidationError(
            f"Got {len(documents)} documents but {len(ids)} ids"
        )


class InMemoryVectorStore(VectorStore):
    """
    Dict-backed vector store.

    Keeps the Document next to its vector so callers can inspect what
    was written.
    """

    def __init__(self, embedder: SupportsEmbedding):
        self.embedder = embedder
        self._store: Dict[str, Tuple[Document, np.ndarray]] = {}
        self._lock = threading.Lock()

    def add_documents(self, documents: Sequence[Document], ids: Sequence[str]) -> None:
        _check_ids(documents, ids)
        if not documents:
            return
        vectors = self.embedder.embed_texts([d.page_content for d in documents])
        with self._lock:
            for doc_id, document, vector in zip(ids, documents, vectors):
                self._store[doc_id] = (document, np.asarray(vector))

    def delete(self, ids: Sequence[str]) -> None:
        with self._lock:
            for doc_id in ids:
                self._store.pop(doc_id, None)

    def get(self, doc_id: str) -> Optional[Document]:
        entry = self._store.get(doc_id)
        return entry[0] if entry else None

    def ids(self) -> List[str]:
        return list(self._store)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._store

    def __len__(self) -> int:
        return len(self._store)


def _sanitize_metadata(metadata: Dict[str, Any], doc_id: str) -> Dict[str, Any]:
    """Chroma only accepts str/int/float/bool values."""
    clean: Dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            clean[key] = value
        else:
            clean[key] = str(value)
    clean["chunk_id"] = doc_id
    return clean


def make_chroma_client(
    path: Optional[Path | str] = None,
    host: Optional[str] = None,
    port: int = 8000,
):
    """Remote client when a host is given, local persistent client otherwise."""
    import chromadb

    if host:
        logger.info(f"Connecting to Chroma at {host}:{port}")
        return chromadb.HttpClient(host=host, port=port)
    if path is None:
        return chromadb.EphemeralClient()
    Path(path).mkdir(parents=True, exist_ok=True)
    logger.info(f"Using local Chroma store at {path}")
    return chromadb.PersistentClient(path=str(path))


class ChromaVectorStore(VectorStore):
    """
    Chroma collection as a vector store.

    Embeddings are computed with our own embedder and passed explicitly,
    so the collection's default embedding function is never invoked.
    """

    def __init__(
        self,
        collection_name: str,
        embedder: SupportsEmbedding,
        client=None,
        path: Optional[Path | str] = None,
        host: Optional[str] = None,
        port: int = 8000,
    ):
        self.collection_name = collection_name
        self.embedder = embedder
        self._client = client if client is not None else make_chroma_client(path, host, port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    @property
    def client(self):
        return self._client

    def add_documents(self, documents: Sequence[Document], ids: Sequence[str]) -> None:
        _check_ids(documents, ids)
        if not documents:
            return
        texts = [d.page_content for d in documents]
        try:
            vectors = self.embedder.embed_texts(texts)
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to embed {len(texts)} documents: {e}") from e

        try:
            self._collection.upsert(
                ids=list(ids),
                documents=texts,
                metadatas=[_sanitize_metadata(d.metadata, i) for d, i in zip(documents, ids)],
                embeddings=np.asarray(vectors, dtype=np.float32).tolist(),
            )
        except Exception as e:
            raise TransientWriteError("chroma upsert", ids, e) from e

    def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        try:
            self._collection.delete(ids=list(ids))
        except Exception as e:
            raise TransientWriteError("chroma delete", ids, e) from e

    def count(self) -> int:
        return self._collection.count()


def list_collections(client) -> List[Dict[str, Any]]:
    """
    Describe every collection on a Chroma client.

    Returns:
        One dict per collection with name, description and item count
    """
    described = []
    for entry in client.list_collections():
        # Older clients return Collection objects, newer ones names
        name = entry if isinstance(entry, str) else entry.name
        collection = client.get_collection(name=name)
        metadata = collection.metadata or {}
        described.append({
            "name": name,
            "description": metadata.get("description", "N/A"),
            "count": collection.count(),
        })
    return described
