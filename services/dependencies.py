"""
Service wiring for the Document Intelligence Engine
"""
import logging
from functools import lru_cache

from config import settings
from services.document_service import DocumentCatalog
from services.embedding_service import EmbeddingService
from services.ingestion_queue import IngestionQueue
from services.llm_service import CompletionClient
from services.pdf_processor import PDFProcessor
from services.question_service import AnswerSynthesizer
from services.quiz_generator import QuizGenerator
from services.retrieval_service import RetrievalService
from services.storage import InMemoryMetadataStore, LocalObjectStorage
from services.subject_classifier import SubjectClassifier
from services.summary_service import PageStudySession, Summarizer
from services.text_chunker import TextChunker

logger = logging.getLogger(__name__)


@lru_cache()
def get_completion_client():
    """
    Get completion client instance (cached singleton)
    """
    return CompletionClient()


@lru_cache()
def get_embedding_service():
    """
    Get embedding service instance (cached singleton)
    """
    return EmbeddingService()


@lru_cache()
def get_retrieval_service():
    """
    Get retrieval service instance (cached singleton)
    """
    return RetrievalService(TextChunker(), get_embedding_service())


@lru_cache()
def get_pdf_processor():
    return PDFProcessor()


@lru_cache()
def get_object_storage():
    return LocalObjectStorage(settings.storage_directory)


@lru_cache()
def get_metadata_store():
    return InMemoryMetadataStore()


@lru_cache()
def get_subject_classifier():
    return SubjectClassifier(get_completion_client())


@lru_cache()
def get_ingestion_queue():
    """
    Get ingestion queue instance (cached singleton)
    """
    return IngestionQueue(
        classifier=get_subject_classifier(),
        storage=get_object_storage(),
        metadata_store=get_metadata_store(),
        pdf_processor=get_pdf_processor()
    )


@lru_cache()
def get_document_catalog():
    return DocumentCatalog(get_metadata_store(), get_object_storage())


def create_study_session(user_id: str, document_id: str, document_name: str = None,
                         auto_summarize: bool = True) -> PageStudySession:
    """New study session sharing the cached services"""
    client = get_completion_client()
    return PageStudySession(
        retrieval_service=get_retrieval_service(),
        answer_synthesizer=AnswerSynthesizer(client),
        summarizer=Summarizer(client),
        quiz_generator=QuizGenerator(client),
        user_id=user_id,
        document_id=document_id,
        document_name=document_name,
        auto_summarize=auto_summarize
    )
