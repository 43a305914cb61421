"""
Retrieval service for the Document Intelligence Engine

A RetrievalScope binds the chunks and embeddings of one text source (one
document page) and answers top-k passage queries against it.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from config import settings
from models.document import Chunk
from services.embedding_service import EmbeddingService
from services.text_chunker import TextChunker
from services.vector_store import VectorIndexInterface, create_vector_index
from utils.error_handlers import log_performance_metric
from utils.exceptions import (
    DocIntelException,
    ErrorCode,
    RetrievalError,
    ValidationError,
    create_scope_not_initialized_error,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ScopeState:
    """Fully built index contents, swapped in as a unit"""
    source_text: str
    chunks: Tuple[Chunk, ...]
    index: VectorIndexInterface
    backend: str


class RetrievalScope:
    """
    The active (chunks, embeddings) pair for one text source.

    All operations hold the scope lock, so re-initialization and queries on
    the same scope never interleave. A failed ``initialize`` leaves the
    previous state queryable.
    """

    def __init__(
        self,
        text_chunker: TextChunker,
        embedding_service: EmbeddingService,
        index_factory: Optional[Callable[[], VectorIndexInterface]] = None
    ):
        self.text_chunker = text_chunker
        self.embedding_service = embedding_service
        self.index_factory = index_factory or (lambda: create_vector_index(settings.vector_index_backend))
        self.lock = threading.RLock()
        self._state: Optional[_ScopeState] = None

    @property
    def is_ready(self) -> bool:
        with self.lock:
            return self._state is not None

    @property
    def chunks(self) -> List[Chunk]:
        with self.lock:
            return list(self._state.chunks) if self._state else []

    @property
    def source_text(self) -> Optional[str]:
        with self.lock:
            return self._state.source_text if self._state else None

    def initialize(self, text: str) -> int:
        """
        Replace the scope with the chunks and embeddings of ``text``.

        Args:
            text: Page text; whitespace is normalized before chunking

        Returns:
            Number of chunks indexed

        Raises:
            EmbeddingError: If embeddings could not be produced
            VectorStoreError: If the index could not be built
        """
        start_time = time.time()
        with self.lock:
            normalized = self.text_chunker.normalize(text or "")
            chunks = self.text_chunker.chunk_text(normalized)

            batch = self.embedding_service.generate_embeddings_batch([chunk.text for chunk in chunks])
            index = self.index_factory()
            index.add(chunks, batch.vectors)

            previous = self._state
            self._state = _ScopeState(
                source_text=normalized,
                chunks=tuple(chunks),
                index=index,
                backend=batch.backend
            )
            if previous is not None:
                previous.index.clear()

        duration_ms = int((time.time() - start_time) * 1000)
        stats = self.text_chunker.get_chunk_statistics(chunks)
        log_performance_metric("scope_initialization", duration_ms, {
            **stats,
            "characters": len(normalized),
            "backend": batch.backend
        })
        return len(chunks)

    def query_with_scores(self, text: str, k: int) -> List[Tuple[Chunk, float]]:
        """
        Return the k most similar chunks with their cosine similarity.

        Raises:
            ValidationError: If k is not positive or the query is empty
            RetrievalError: If the scope was never initialized
        """
        if not isinstance(k, int) or k <= 0:
            raise ValidationError(
                "k must be a positive integer",
                field_name="k",
                field_value=k,
                validation_rule="k > 0"
            )
        if not text or not text.strip():
            raise ValidationError(
                "Query text cannot be empty",
                field_name="text",
                error_code=ErrorCode.INVALID_QUESTION
            )

        with self.lock:
            state = self._state
            if state is None:
                raise create_scope_not_initialized_error()
            if not state.chunks:
                return []

            try:
                query_vector = self.embedding_service.generate_embedding(text.strip(), backend=state.backend)
                results = state.index.search(query_vector, k)
            except DocIntelException:
                raise
            except Exception as e:
                logger.error(f"Failed to query retrieval scope: {e}")
                raise RetrievalError(
                    f"Failed to query retrieval scope: {e}",
                    query_text=text,
                    top_k=k,
                    original_exception=e
                ) from e

        logger.info(f"Retrieved {len(results)} chunks (top_k={k})")
        return results

    def query(self, text: str, k: int) -> List[Chunk]:
        """Return up to k chunks, most similar first, ties by lower index"""
        return [chunk for chunk, _ in self.query_with_scores(text, k)]

    def reset(self) -> None:
        """Drop the active state; the scope is uninitialized afterwards"""
        with self.lock:
            if self._state is not None:
                self._state.index.clear()
            self._state = None


class RetrievalService:
    """Creates retrieval scopes that share one chunker and embedder"""

    def __init__(
        self,
        text_chunker: Optional[TextChunker] = None,
        embedding_service: Optional[EmbeddingService] = None,
        index_factory: Optional[Callable[[], VectorIndexInterface]] = None
    ):
        """
        Initialize the retrieval service

        Args:
            text_chunker: Chunker used for every scope
            embedding_service: Service for generating embeddings
            index_factory: Zero-argument callable returning an empty index
        """
        self.text_chunker = text_chunker or TextChunker()
        self.embedding_service = embedding_service or EmbeddingService()
        self.index_factory = index_factory

    def create_scope(self) -> RetrievalScope:
        return RetrievalScope(self.text_chunker, self.embedding_service, self.index_factory)

    def build_scope(self, text: str) -> RetrievalScope:
        """Create a scope already initialized with ``text``"""
        scope = self.create_scope()
        scope.initialize(text)
        return scope
