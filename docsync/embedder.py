"""
Embedder - Batch text-to-vector embedding.

Wraps a sentence-transformers model. The model is loaded lazily on the
first call so that runs which skip every document never pay for it.
ONNX Runtime can be enabled for faster CPU inference.
"""

import logging
from typing import List, Optional

import numpy as np

from .config import get_config, IndexerConfig
from .errors import EmbeddingError


logger = logging.getLogger(__name__)


class Embedder:
    """
    Batch embedding generator.

    Features:
    - Optional ONNX Runtime backend
    - Lazy model loading
    - Batch processing for GPU efficiency
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._model = None
        self._dimension: int = 384  # Default for all-MiniLM-L6-v2

    def _get_model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            import torch

            device = "cpu"
            if torch.backends.mps.is_available():
                device = "mps"
            elif torch.cuda.is_available():
                device = "cuda"

            model_name = self.config.embedding_model
            try:
                if self.config.use_onnx:
                    self._model = SentenceTransformer(model_name, device=device, backend="onnx")
                else:
                    self._model = SentenceTransformer(model_name, device=device)
            except Exception as e:
                raise EmbeddingError(f"Could not load embedding model {model_name!r}: {e}") from e

            self._dimension = self._model.get_sentence_embedding_dimension()
            backend_name = "ONNX" if self.config.use_onnx else "PyTorch"
            logger.info(f"Loaded {backend_name} model {model_name} (dim={self._dimension}) on {device}")
        return self._model

    @property
    def dimension(self) -> int:
        """Get embedding dimension (loads model if needed)."""
        self._get_model()
        return self._dimension

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """
        Embed multiple texts in batches.

        Args:
            texts: List of strings to embed

        Returns:
            NumPy array of shape (len(texts), dimension)
        """
        if not texts:
            return np.array([], dtype=np.float32).reshape(0, self._dimension)

        model = self._get_model()
        batch_size = self.config.embedder_batch_size
        all_embeddings = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            embeddings = model.encode(
                batch,
                convert_to_numpy=True,
                normalize_embeddings=True,  # Better for cosine similarity
            )
            all_embeddings.append(embeddings)

        return np.vstack(all_embeddings).astype(np.float32)

    def embed_text(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return self.embed_texts([text])[0]


# Singleton instance
_embedder: Optional[Embedder] = None


def get_embedder(config: IndexerConfig | None = None) -> Embedder:
    """Get the singleton embedder instance."""
    global _embedder
    if _embedder is None:
        _embedder = Embedder(config)
    return _embedder
