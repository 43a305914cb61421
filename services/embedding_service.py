"""
Embedding generation service for the Document Intelligence Engine
"""
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import List, Dict, Optional

import numpy as np

from config import settings
from utils.exceptions import EmbeddingError
from utils.error_handlers import handle_service_degradation

logger = logging.getLogger(__name__)

HASH_BACKEND = "hash"
MODEL_BACKEND = "sentence-transformers"
_TOKEN_PATTERN = re.compile(r"\w+")


@dataclass
class EmbeddingBatch:
    """Vectors for a batch of texts plus the backend that produced them"""
    vectors: List[np.ndarray]
    backend: str

    @property
    def dimension(self) -> int:
        return int(self.vectors[0].shape[0]) if self.vectors else 0


def token_bucket(token: str, dimensions: int) -> int:
    """Stable bucket for a token; md5 keeps it identical across processes"""
    digest = hashlib.md5(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % dimensions


def hash_embedding(text: str, dimensions: int = 100) -> np.ndarray:
    """
    Deterministic bag-of-words embedding used when no model is available.

    Every lowercased word token adds one to its hashed bucket and the result
    is L2-normalized, so a passage shares buckets with any fragment of it.
    """
    embedding = np.zeros(dimensions, dtype=np.float64)
    for token in _TOKEN_PATTERN.findall(text.lower()):
        embedding[token_bucket(token, dimensions)] += 1.0

    magnitude = np.linalg.norm(embedding)
    if magnitude == 0:
        return embedding
    return embedding / magnitude


class EmbeddingService:
    """Service for generating text embeddings using sentence-transformers,
    degrading to deterministic hash embeddings when the model is unusable"""

    def __init__(
        self,
        backend: Optional[str] = None,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        fallback_enabled: Optional[bool] = None,
        cache_size: int = 1000
    ):
        """
        Initialize the embedding service

        Args:
            backend: "sentence-transformers" or "hash"
            model_name: Name of the sentence-transformers model to use
            dimensions: Vector length for the hash backend
            fallback_enabled: Fall back to hash embeddings when the model fails
            cache_size: Maximum number of embeddings to cache
        """
        self.backend = backend or settings.embedding_backend
        self.model_name = model_name or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.fallback_enabled = settings.embedding_fallback_enabled if fallback_enabled is None else fallback_enabled
        self.batch_size = settings.embedding_batch_size
        self.model = None
        self.cache: Dict[str, np.ndarray] = {}
        self.cache_size = cache_size

        if self.backend not in (MODEL_BACKEND, HASH_BACKEND):
            raise ValueError(f"Unknown embedding backend: {self.backend}")

    def _load_model(self):
        """Load the sentence-transformers model on first use"""
        if self.model is None:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self.model_name}")
            self.model = SentenceTransformer(self.model_name)
            logger.info(f"Model loaded successfully. Embedding dimension: "
                        f"{self.model.get_sentence_embedding_dimension()}")
        return self.model

    def _get_cache_key(self, backend: str, text: str) -> str:
        """Generate a cache key for the given text"""
        return backend + ":" + hashlib.md5(text.encode('utf-8')).hexdigest()

    def _manage_cache_size(self) -> None:
        """Remove oldest entries if cache exceeds size limit"""
        if len(self.cache) >= self.cache_size:
            # Remove 20% of oldest entries (simple FIFO approach)
            num_to_remove = max(1, int(self.cache_size * 0.2))
            keys_to_remove = list(self.cache.keys())[:num_to_remove]
            for key in keys_to_remove:
                del self.cache[key]

    def _encode_with_model(self, texts: List[str]) -> List[np.ndarray]:
        model = self._load_model()
        vectors = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            encoded = model.encode(batch, convert_to_numpy=True, show_progress_bar=False)
            vectors.extend(np.asarray(vector, dtype=np.float64) for vector in encoded)
        return vectors

    def _encode(self, texts: List[str], backend: str) -> List[np.ndarray]:
        results: Dict[int, np.ndarray] = {}
        pending = []
        for i, text in enumerate(texts):
            cached = self.cache.get(self._get_cache_key(backend, text))
            if cached is not None:
                results[i] = cached
            else:
                pending.append(i)

        if pending:
            pending_texts = [texts[i] for i in pending]
            if backend == HASH_BACKEND:
                vectors = [hash_embedding(text, self.dimensions) for text in pending_texts]
            else:
                vectors = self._encode_with_model(pending_texts)

            for i, vector in zip(pending, vectors):
                self._manage_cache_size()
                self.cache[self._get_cache_key(backend, texts[i])] = vector
                results[i] = vector

        return [results[i] for i in range(len(texts))]

    def generate_embeddings_batch(self, texts: List[str]) -> EmbeddingBatch:
        """
        Generate embeddings for a batch of texts with a single backend.

        If the model backend fails and fallback is enabled, the whole batch is
        re-embedded with the hash backend so every vector shares one space.

        Args:
            texts: Input texts to embed

        Returns:
            EmbeddingBatch with one vector per text, in input order

        Raises:
            ValueError: If any text is empty
            EmbeddingError: If the model fails and fallback is disabled
        """
        if not texts:
            return EmbeddingBatch(vectors=[], backend=self.backend)

        for i, text in enumerate(texts):
            if not text or not text.strip():
                raise ValueError(f"Text at index {i} cannot be empty")

        if self.backend == HASH_BACKEND:
            return EmbeddingBatch(vectors=self._encode(texts, HASH_BACKEND), backend=HASH_BACKEND)

        try:
            vectors = self._encode(texts, MODEL_BACKEND)
            logger.info(f"Generated {len(vectors)} embeddings with {self.model_name}")
            return EmbeddingBatch(vectors=vectors, backend=MODEL_BACKEND)
        except Exception as e:
            if not self.fallback_enabled:
                logger.error(f"Failed to generate batch embeddings: {e}")
                raise EmbeddingError(
                    message=f"Embedding model failed: {e}",
                    text_count=len(texts),
                    model_name=self.model_name,
                    original_exception=e
                ) from e
            handle_service_degradation("embedding_model", e)
            return EmbeddingBatch(vectors=self._encode(texts, HASH_BACKEND), backend=HASH_BACKEND)

    def generate_embedding(self, text: str, backend: Optional[str] = None) -> np.ndarray:
        """
        Generate an embedding for a single text.

        Args:
            text: Input text to embed
            backend: Force a backend, used so query vectors match the vectors
                of an existing index

        Returns:
            Numpy array containing the embedding vector
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        if backend is None:
            return self.generate_embeddings_batch([text]).vectors[0]

        try:
            return self._encode([text], backend)[0]
        except Exception as e:
            logger.error(f"Failed to generate embedding for text: {e}")
            raise EmbeddingError(
                message=f"Embedding backend {backend} failed: {e}",
                text_count=1,
                model_name=self.model_name,
                original_exception=e
            ) from e

    def clear_cache(self) -> None:
        """Clear the embedding cache"""
        self.cache.clear()
        logger.info("Embedding cache cleared")

    def get_cache_stats(self) -> Dict[str, int]:
        """Get cache statistics"""
        return {
            "cache_size": len(self.cache),
            "cache_limit": self.cache_size
        }
