"""
Vector index for the Document Intelligence Engine

An index holds the chunk/embedding pairs of exactly one retrieval scope.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Tuple

import chromadb
from chromadb.config import Settings as ChromaSettings
import numpy as np

from models.document import Chunk
from utils.exceptions import VectorStoreError

logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions differ: {a.shape} vs {b.shape}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def rank_by_similarity(scored: List[Tuple[Chunk, float]], top_k: int) -> List[Tuple[Chunk, float]]:
    """Highest score first, ties broken by lower chunk index"""
    return sorted(scored, key=lambda pair: (-pair[1], pair[0].index))[:top_k]


class VectorIndexInterface(ABC):
    """Abstract interface for vector index operations"""

    @abstractmethod
    def add(self, chunks: List[Chunk], vectors: List[np.ndarray]) -> None:
        """Add chunks with their embeddings to the index"""
        pass

    @abstractmethod
    def search(self, query_vector: np.ndarray, top_k: int) -> List[Tuple[Chunk, float]]:
        """Return up to top_k (chunk, similarity) pairs, most similar first"""
        pass

    @abstractmethod
    def size(self) -> int:
        """Number of stored chunks"""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every stored chunk"""
        pass

    def get_stats(self) -> Dict[str, Any]:
        return {"total_chunks": self.size(), "backend": type(self).__name__}

    @staticmethod
    def _check_lengths(chunks: List[Chunk], vectors: List[np.ndarray]) -> None:
        if len(chunks) != len(vectors):
            raise VectorStoreError(
                f"Got {len(chunks)} chunks but {len(vectors)} vectors",
                operation="add"
            )


class InMemoryVectorIndex(VectorIndexInterface):
    """Linear-scan index backed by a numpy matrix"""

    def __init__(self):
        self._chunks: List[Chunk] = []
        self._matrix = None

    def add(self, chunks: List[Chunk], vectors: List[np.ndarray]) -> None:
        self._check_lengths(chunks, vectors)
        if not chunks:
            return

        new_rows = np.vstack([np.asarray(v, dtype=np.float64) for v in vectors])
        if self._matrix is not None and self._matrix.shape[1] != new_rows.shape[1]:
            raise VectorStoreError(
                f"Vector dimension {new_rows.shape[1]} does not match index dimension {self._matrix.shape[1]}",
                operation="add",
                backend="memory"
            )

        self._matrix = new_rows if self._matrix is None else np.vstack([self._matrix, new_rows])
        self._chunks.extend(chunks)
        logger.debug(f"Indexed {len(chunks)} chunks in memory")

    def search(self, query_vector: np.ndarray, top_k: int) -> List[Tuple[Chunk, float]]:
        if not self._chunks or top_k <= 0:
            return []

        scored = [
            (chunk, cosine_similarity(query_vector, self._matrix[row]))
            for row, chunk in enumerate(self._chunks)
        ]
        return rank_by_similarity(scored, top_k)

    def size(self) -> int:
        return len(self._chunks)

    def clear(self) -> None:
        self._chunks = []
        self._matrix = None


class ChromaVectorIndex(VectorIndexInterface):
    """ChromaDB implementation of the vector index, one ephemeral collection per scope"""

    def __init__(self, collection_name: str = None):
        """
        Initialize an in-process ChromaDB collection

        Args:
            collection_name: Name of the collection, random when omitted
        """
        self.collection_name = collection_name or f"scope_{uuid.uuid4().hex}"
        self.client = None
        self.collection = None
        self._chunks: Dict[str, Chunk] = {}
        self._initialize_client()

    def _initialize_client(self) -> None:
        try:
            self.client = chromadb.EphemeralClient(
                settings=ChromaSettings(anonymized_telemetry=False, allow_reset=True)
            )
            self.collection = self.client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"}
            )
            logger.info(f"ChromaDB collection '{self.collection_name}' initialized")
        except Exception as e:
            logger.error(f"Failed to initialize ChromaDB: {e}")
            raise VectorStoreError(
                f"Failed to initialize ChromaDB: {e}",
                operation="initialize",
                backend="chroma",
                original_exception=e
            ) from e

    def add(self, chunks: List[Chunk], vectors: List[np.ndarray]) -> None:
        self._check_lengths(chunks, vectors)
        if not chunks:
            return

        ids = [str(chunk.index) for chunk in chunks]
        try:
            self.collection.add(
                ids=ids,
                embeddings=[np.asarray(v, dtype=np.float64).tolist() for v in vectors],
                documents=[chunk.text for chunk in chunks],
                metadatas=[{"chunk_index": chunk.index, "start_offset": chunk.start_offset} for chunk in chunks]
            )
        except Exception as e:
            logger.error(f"Failed to add chunks to ChromaDB: {e}")
            raise VectorStoreError(
                f"Failed to add chunks to ChromaDB: {e}",
                operation="add",
                backend="chroma",
                original_exception=e
            ) from e

        for chunk_id, chunk in zip(ids, chunks):
            self._chunks[chunk_id] = chunk
        logger.info(f"Successfully added {len(ids)} chunks to ChromaDB")

    def search(self, query_vector: np.ndarray, top_k: int) -> List[Tuple[Chunk, float]]:
        if not self._chunks or top_k <= 0:
            return []

        try:
            # Every candidate is fetched so equal scores can be ordered by chunk index
            results = self.collection.query(
                query_embeddings=[np.asarray(query_vector, dtype=np.float64).tolist()],
                n_results=len(self._chunks),
                include=["distances"]
            )
        except Exception as e:
            logger.error(f"Failed to search ChromaDB: {e}")
            raise VectorStoreError(
                f"Failed to search ChromaDB: {e}",
                operation="search",
                backend="chroma",
                original_exception=e
            ) from e

        scored = []
        if results["ids"]:
            for chunk_id, distance in zip(results["ids"][0], results["distances"][0]):
                # cosine space distance is 1 - similarity
                scored.append((self._chunks[chunk_id], 1.0 - float(distance)))
        return rank_by_similarity(scored, top_k)

    def size(self) -> int:
        return len(self._chunks)

    def clear(self) -> None:
        try:
            self.client.delete_collection(self.collection_name)
            self.collection = self.client.create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"}
            )
        except Exception as e:
            logger.error(f"Failed to reset collection: {e}")
            raise VectorStoreError(
                f"Failed to reset collection: {e}",
                operation="clear",
                backend="chroma",
                original_exception=e
            ) from e
        self._chunks = {}


# Factory function to create vector index instances
def create_vector_index(index_type: str = "memory", **kwargs) -> VectorIndexInterface:
    """
    Factory function to create vector index instances

    Args:
        index_type: Type of vector index ("memory" or "chroma")
        **kwargs: Additional arguments for the index

    Returns:
        VectorIndexInterface instance
    """
    if index_type.lower() == "memory":
        return InMemoryVectorIndex(**kwargs)
    elif index_type.lower() == "chroma":
        return ChromaVectorIndex(**kwargs)
    else:
        raise ValueError(f"Unsupported vector index type: {index_type}")
