"""
Service layer for the Document Intelligence Engine
"""
from .text_chunker import TextChunker, ChunkingConfig, expected_chunk_count
from .embedding_service import EmbeddingService, EmbeddingBatch, hash_embedding
from .vector_store import (
    VectorIndexInterface, InMemoryVectorIndex, ChromaVectorIndex, create_vector_index, cosine_similarity
)
from .retrieval_service import RetrievalService, RetrievalScope
from .llm_service import (
    CompletionClient, CompletionRequest, CompletionResponse, ChatMessage, TokenCounter, PromptTemplate
)
from .question_service import AnswerSynthesizer
from .subject_classifier import SubjectClassifier
from .quiz_generator import QuizGenerator, parse_quiz_payload
from .quiz_grading import QuizGradingEngine, QuestionState, QuizState
from .summary_service import Summarizer, PageStudySession
from .pdf_processor import PDFProcessor
from .storage import (
    ObjectStorage, InMemoryObjectStorage, LocalObjectStorage, MetadataStore, InMemoryMetadataStore
)
from .ingestion_queue import IngestionQueue, SourceFile, build_storage_path
from .document_service import DocumentCatalog

__all__ = [
    'TextChunker', 'ChunkingConfig', 'expected_chunk_count',
    'EmbeddingService', 'EmbeddingBatch', 'hash_embedding',
    'VectorIndexInterface', 'InMemoryVectorIndex', 'ChromaVectorIndex', 'create_vector_index', 'cosine_similarity',
    'RetrievalService', 'RetrievalScope',
    'CompletionClient', 'CompletionRequest', 'CompletionResponse', 'ChatMessage', 'TokenCounter', 'PromptTemplate',
    'AnswerSynthesizer', 'SubjectClassifier',
    'QuizGenerator', 'parse_quiz_payload',
    'QuizGradingEngine', 'QuestionState', 'QuizState',
    'Summarizer', 'PageStudySession',
    'PDFProcessor',
    'ObjectStorage', 'InMemoryObjectStorage', 'LocalObjectStorage', 'MetadataStore', 'InMemoryMetadataStore',
    'IngestionQueue', 'SourceFile', 'build_storage_path',
    'DocumentCatalog'
]
