"""
Splitter - Sliding-window text chunking.

Cuts long documents into overlapping character windows. Every chunk keeps
a copy of its parent's metadata, so all chunks of one file share the same
source id.
"""

from typing import Iterable, List

from .config import get_config, IndexerConfig
from .models import Document


class TextSplitter:
    """Fixed-size character splitter with overlap."""

    def __init__(
        self,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        config: IndexerConfig | None = None,
    ):
        config = config or get_config()
        self.chunk_size = chunk_size or config.chunk_size
        self.chunk_overlap = config.chunk_overlap if chunk_overlap is None else chunk_overlap
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

    def split_text(self, text: str) -> List[str]:
        """
        Split text into overlapping chunks.

        Uses sliding window with overlap for context preservation.
        """
        if len(text) <= self.chunk_size:
            return [text.strip()] if text.strip() else []

        chunks = []
        pos = 0
        step = self.chunk_size - self.chunk_overlap

        while pos < len(text):
            chunk = text[pos:pos + self.chunk_size].strip()
            if chunk:
                chunks.append(chunk)

            # Last window already reached the end
            if pos + self.chunk_size >= len(text):
                break
            pos += step

        return chunks

    def split_documents(self, documents: Iterable[Document]) -> List[Document]:
        """Split each document; chunks inherit the parent's metadata."""
        chunks: List[Document] = []
        for document in documents:
            for text in self.split_text(document.page_content):
                chunks.append(Document(page_content=text, metadata=dict(document.metadata)))
        return chunks
