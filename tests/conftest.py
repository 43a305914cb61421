"""
Shared fixtures for the Document Intelligence Engine tests
"""
import threading
from typing import List, Union

import pytest

from services.embedding_service import EmbeddingService
from services.llm_service import CompletionRequest, CompletionResponse
from services.retrieval_service import RetrievalService
from services.storage import InMemoryMetadataStore, InMemoryObjectStorage
from services.text_chunker import ChunkingConfig, TextChunker


class ScriptedCompletionClient:
    """
    Stand-in for CompletionClient that replays scripted replies.

    Each reply is either a string (returned as the completion text) or an
    exception instance (raised). The last reply repeats once the script runs
    out. Every request is recorded.
    """

    def __init__(self, *replies: Union[str, Exception], model: str = "test-model"):
        self.replies: List[Union[str, Exception]] = list(replies)
        self.model = model
        self.requests: List[CompletionRequest] = []
        self._lock = threading.Lock()

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        with self._lock:
            self.requests.append(request)
            if len(self.replies) > 1:
                reply = self.replies.pop(0)
            else:
                reply = self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return CompletionResponse(text=reply, model_used=request.model or self.model)

    @property
    def call_count(self) -> int:
        return len(self.requests)


@pytest.fixture
def completion_client():
    return ScriptedCompletionClient("stub answer")


@pytest.fixture
def hash_embedding_service():
    return EmbeddingService(backend="hash", dimensions=64)


@pytest.fixture
def small_chunker():
    return TextChunker(ChunkingConfig(chunk_size=40, overlap=10))


@pytest.fixture
def retrieval_service(small_chunker, hash_embedding_service):
    return RetrievalService(small_chunker, hash_embedding_service)


@pytest.fixture
def object_storage():
    return InMemoryObjectStorage(slice_size=4)


@pytest.fixture
def metadata_store():
    return InMemoryMetadataStore()
