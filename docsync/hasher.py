"""
Hasher - Fast content fingerprinting using xxHash.

Uses XXH3-128 instead of SHA256 for much faster hashing of large batches.
The fingerprint covers the document text and, by default, its metadata.
The record key folds in the namespace and the source id so identical
text coming from two sources never collapses into one vector.
"""

import asyncio
import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import xxhash

from .config import get_config, IndexerConfig
from .errors import ValidationError
from .models import Document, HashedDocument


logger = logging.getLogger(__name__)

# Fixed UUIDv5 namespace for record keys
NAMESPACE_DOCSYNC = uuid.UUID("6f3c2a7e-1b4d-5e8f-9a0b-2c4d6e8f0a1b")


def _hash_text(text: str) -> str:
    return xxhash.xxh3_128_hexdigest(text.encode("utf-8"))


def _canonical_metadata(metadata: dict) -> str:
    # Sorted keys so dict ordering never changes the fingerprint
    return json.dumps(metadata, sort_keys=True, ensure_ascii=False, default=str)


def get_group_id(document: Document, source_id_key: str, index: Optional[int] = None) -> str:
    """
    Extract the source id from a document.

    Raises:
        ValidationError: if the field is missing or None
    """
    value = document.metadata.get(source_id_key)
    if value is None:
        preview = document.page_content[:50].replace("\n", " ")
        where = f"at position {index} " if index is not None else ""
        raise ValidationError(
            f"Document {where}is missing metadata field {source_id_key!r} "
            f"(content: {preview!r})",
            index=index,
            document=document,
        )
    return str(value)


class Hasher:
    """
    Deterministic document fingerprinting.

    Hashing is CPU bound and embarrassingly parallel, so batches are
    spread over a small thread pool. Output order always matches input.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.hasher_concurrency,
                thread_name_prefix="hasher"
            )
        return self._executor

    def hash_document(
        self,
        document: Document,
        namespace: str,
        source_id_key: str,
        index: Optional[int] = None,
    ) -> HashedDocument:
        """
        Fingerprint one document and derive its record key.

        Args:
            document: Document to hash
            namespace: Ledger namespace the key belongs to
            source_id_key: Metadata field holding the source id
            index: Position in the batch (for error messages)
        """
        group_id = get_group_id(document, source_id_key, index)

        content_hash = _hash_text(document.page_content)
        if self.config.hash_metadata:
            metadata_hash = _hash_text(_canonical_metadata(document.metadata))
        else:
            metadata_hash = ""

        fingerprint = _hash_text(content_hash + metadata_hash)

        if document.id is not None:
            key = str(document.id)
        else:
            key = self.derive_key(namespace, group_id, fingerprint)

        return HashedDocument(
            document=document,
            content_hash=content_hash,
            metadata_hash=metadata_hash,
            hash=fingerprint,
            key=key,
            group_id=group_id,
        )

    @staticmethod
    def derive_key(namespace: str, group_id: str, fingerprint: str) -> str:
        """UUIDv5 over (namespace, source id, fingerprint)."""
        return str(uuid.uuid5(NAMESPACE_DOCSYNC, f"{namespace}\x00{group_id}\x00{fingerprint}"))

    async def hash_documents(
        self,
        documents: Sequence[Document],
        namespace: str,
        source_id_key: str,
    ) -> List[HashedDocument]:
        """
        Hash a batch of documents in parallel.

        Args:
            documents: Documents to hash
            namespace: Ledger namespace for key derivation
            source_id_key: Metadata field holding the source id

        Returns:
            HashedDocuments in input order

        Raises:
            ValidationError: first document missing the source id field
        """
        if not documents:
            return []

        loop = asyncio.get_running_loop()
        executor = self._get_executor()

        BATCH_SIZE = 2000  # Large batch since hashing is fast
        all_hashed: List[HashedDocument] = []

        for start in range(0, len(documents), BATCH_SIZE):
            batch = documents[start:start + BATCH_SIZE]

            tasks = [
                loop.run_in_executor(
                    executor,
                    self.hash_document,
                    document,
                    namespace,
                    source_id_key,
                    start + offset,
                )
                for offset, document in enumerate(batch)
            ]

            all_hashed.extend(await asyncio.gather(*tasks))

        logger.debug(f"Hashed {len(all_hashed)} documents for {namespace}")

        return all_hashed

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


async def hash_documents(
    documents: Sequence[Document],
    namespace: str,
    source_id_key: str = "source",
    config: IndexerConfig | None = None,
) -> List[HashedDocument]:
    """
    Convenience function to hash documents.

    Usage:
        hashed = await hash_documents(docs, "local/docs")
        print({h.key for h in hashed})
    """
    hasher = Hasher(config)
    try:
        return await hasher.hash_documents(documents, namespace, source_id_key)
    finally:
        hasher.close()
