"""
Custom exception classes for the Document Intelligence Engine

This module defines all custom exceptions used throughout the engine,
providing structured error handling with proper error codes and messages.
"""
import time
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(Enum):
    """Enumeration of error codes for consistent error handling"""

    # General errors
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Document processing errors
    PDF_PROCESSING_FAILED = "PDF_PROCESSING_FAILED"
    EMBEDDING_GENERATION_FAILED = "EMBEDDING_GENERATION_FAILED"
    VECTOR_INDEX_FAILED = "VECTOR_INDEX_FAILED"
    DOCUMENT_PROCESSING_FAILED = "DOCUMENT_PROCESSING_FAILED"

    # Question answering errors
    INVALID_QUESTION = "INVALID_QUESTION"
    SCOPE_NOT_INITIALIZED = "SCOPE_NOT_INITIALIZED"
    RETRIEVAL_FAILED = "RETRIEVAL_FAILED"
    LLM_SERVICE_UNAVAILABLE = "LLM_SERVICE_UNAVAILABLE"
    LLM_API_ERROR = "LLM_API_ERROR"
    LLM_RATE_LIMIT = "LLM_RATE_LIMIT"
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_INVALID_RESPONSE = "LLM_INVALID_RESPONSE"
    LLM_CANCELLED = "LLM_CANCELLED"
    QUESTION_PROCESSING_FAILED = "QUESTION_PROCESSING_FAILED"

    # Quiz errors
    QUIZ_GENERATION_FAILED = "QUIZ_GENERATION_FAILED"
    QUIZ_STATE_ERROR = "QUIZ_STATE_ERROR"

    # Storage and catalogue errors
    FILE_UPLOAD_FAILED = "FILE_UPLOAD_FAILED"
    STORAGE_DELETE_FAILED = "STORAGE_DELETE_FAILED"
    OBJECT_NOT_FOUND = "OBJECT_NOT_FOUND"
    METADATA_WRITE_FAILED = "METADATA_WRITE_FAILED"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    DUPLICATE_DOCUMENT = "DUPLICATE_DOCUMENT"
    DUPLICATE_SUBJECT = "DUPLICATE_SUBJECT"
    RESERVED_SUBJECT = "RESERVED_SUBJECT"


# Errors a caller may reasonably retry as-is
RETRYABLE_ERROR_CODES = frozenset({
    ErrorCode.SERVICE_UNAVAILABLE,
    ErrorCode.LLM_SERVICE_UNAVAILABLE,
    ErrorCode.LLM_RATE_LIMIT,
    ErrorCode.LLM_TIMEOUT,
    ErrorCode.LLM_API_ERROR,
    ErrorCode.LLM_INVALID_RESPONSE,
    ErrorCode.QUIZ_GENERATION_FAILED,
    ErrorCode.FILE_UPLOAD_FAILED,
    ErrorCode.METADATA_WRITE_FAILED,
})


class DocIntelException(Exception):
    """
    Base exception class for all Document Intelligence Engine errors

    Provides structured error information with error codes, messages,
    and optional details for debugging and user feedback.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        """
        Initialize the exception

        Args:
            message: Human-readable error message
            error_code: Structured error code for programmatic handling
            details: Optional dictionary with additional error details
            original_exception: Original exception that caused this error (if any)
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.original_exception = original_exception
        self.timestamp = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

    @property
    def retryable(self) -> bool:
        """Whether retrying the whole operation could succeed"""
        return self.error_code in RETRYABLE_ERROR_CODES

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary format for status reporting

        Returns:
            Dictionary representation of the error
        """
        error_dict = {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "retryable": self.retryable,
                "timestamp": self.timestamp
            }
        }

        if self.details:
            error_dict["error"]["details"] = self.details

        return error_dict

    def __str__(self) -> str:
        """String representation of the exception"""
        return f"{self.error_code.value}: {self.message}"


class ConfigurationError(DocIntelException):
    """Exception for invalid configuration or missing credentials"""

    def __init__(
        self,
        message: str,
        setting_name: Optional[str] = None,
        setting_value: Optional[Any] = None,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if setting_name:
            details["setting_name"] = setting_name
        if setting_value is not None:
            details["setting_value"] = str(setting_value)

        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details,
            original_exception=original_exception
        )


class ValidationError(DocIntelException):
    """Exception for input validation errors"""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        field_value: Optional[Any] = None,
        validation_rule: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if field_name:
            details["field_name"] = field_name
        if field_value is not None:
            # Convert to string and truncate for safety
            value_str = str(field_value)
            details["field_value"] = value_str[:100] + "..." if len(value_str) > 100 else value_str
        if validation_rule:
            details["validation_rule"] = validation_rule

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            original_exception=original_exception
        )


class DocumentProcessingError(DocIntelException):
    """Exception for document processing operations"""

    def __init__(
        self,
        message: str,
        document_id: Optional[str] = None,
        filename: Optional[str] = None,
        processing_stage: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.DOCUMENT_PROCESSING_FAILED,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if document_id:
            details["document_id"] = document_id
        if filename:
            details["filename"] = filename
        if processing_stage:
            details["processing_stage"] = processing_stage

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            original_exception=original_exception
        )


class PDFProcessingError(DocumentProcessingError):
    """Exception for PDF text extraction"""

    def __init__(
        self,
        message: str,
        filename: Optional[str] = None,
        page_number: Optional[int] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            filename=filename,
            processing_stage="text_extraction",
            error_code=ErrorCode.PDF_PROCESSING_FAILED,
            original_exception=original_exception
        )

        if page_number is not None:
            self.details["page_number"] = page_number


class EmbeddingError(DocIntelException):
    """Exception for embedding generation operations"""

    def __init__(
        self,
        message: str,
        text_count: Optional[int] = None,
        model_name: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if text_count is not None:
            details["text_count"] = text_count
        if model_name:
            details["model_name"] = model_name

        super().__init__(
            message=message,
            error_code=ErrorCode.EMBEDDING_GENERATION_FAILED,
            details=details,
            original_exception=original_exception
        )


class VectorStoreError(DocIntelException):
    """Exception for vector index operations"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        backend: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if backend:
            details["backend"] = backend

        super().__init__(
            message=message,
            error_code=ErrorCode.VECTOR_INDEX_FAILED,
            details=details,
            original_exception=original_exception
        )


class QuestionProcessingError(DocIntelException):
    """Exception for question processing operations"""

    def __init__(
        self,
        message: str,
        question: Optional[str] = None,
        processing_stage: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.QUESTION_PROCESSING_FAILED,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if question:
            # Truncate question for security/privacy
            details["question"] = question[:100] + "..." if len(question) > 100 else question
        if processing_stage:
            details["processing_stage"] = processing_stage

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            original_exception=original_exception
        )


class LLMServiceError(QuestionProcessingError):
    """Exception for completion service operations"""

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        status_code: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.LLM_API_ERROR,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            processing_stage="llm_generation",
            error_code=error_code,
            original_exception=original_exception
        )

        if model_name:
            self.details["model_name"] = model_name
        if status_code is not None:
            self.details["status_code"] = status_code


class RetrievalError(QuestionProcessingError):
    """Exception for passage retrieval operations"""

    def __init__(
        self,
        message: str,
        query_text: Optional[str] = None,
        top_k: Optional[int] = None,
        error_code: ErrorCode = ErrorCode.RETRIEVAL_FAILED,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            question=query_text,
            processing_stage="passage_retrieval",
            error_code=error_code,
            original_exception=original_exception
        )

        if top_k is not None:
            self.details["top_k"] = top_k


class QuizGenerationError(DocIntelException):
    """Exception for malformed or missing quiz output"""

    def __init__(
        self,
        message: str,
        ordinal: Optional[int] = None,
        field_name: Optional[str] = None,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if ordinal is not None:
            details["ordinal"] = ordinal
        if field_name:
            details["field_name"] = field_name

        super().__init__(
            message=message,
            error_code=ErrorCode.QUIZ_GENERATION_FAILED,
            details=details,
            original_exception=original_exception
        )


class QuizStateError(DocIntelException):
    """Exception for operations that are invalid in the quiz's current state"""

    def __init__(self, message: str, state: Optional[str] = None):
        details = {"state": state} if state else {}
        super().__init__(
            message=message,
            error_code=ErrorCode.QUIZ_STATE_ERROR,
            details=details
        )


class StorageError(DocIntelException):
    """Exception for object storage operations"""

    def __init__(
        self,
        message: str,
        locator: Optional[str] = None,
        operation: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.FILE_UPLOAD_FAILED,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if locator:
            details["locator"] = locator
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            original_exception=original_exception
        )


class MetadataStoreError(DocIntelException):
    """Exception for metadata store operations"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        record_id: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.METADATA_WRITE_FAILED,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if collection:
            details["collection"] = collection
        if record_id:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            original_exception=original_exception
        )


class ServiceUnavailableError(DocIntelException):
    """Exception for service unavailability"""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        retry_after: Optional[int] = None,
        original_exception: Optional[Exception] = None
    ):
        details = {}
        if service_name:
            details["service_name"] = service_name
        if retry_after is not None:
            details["retry_after_seconds"] = retry_after

        super().__init__(
            message=message,
            error_code=ErrorCode.SERVICE_UNAVAILABLE,
            details=details,
            original_exception=original_exception
        )


# Convenience functions for creating common exceptions

def create_scope_not_initialized_error() -> RetrievalError:
    """Create an error for queries against a scope that has no index"""
    return RetrievalError(
        message="Retrieval scope has not been initialized. Open a page before asking questions.",
        error_code=ErrorCode.SCOPE_NOT_INITIALIZED
    )


def create_missing_credentials_error(service_name: str = "completion") -> ConfigurationError:
    """Create an error for a missing API key"""
    return ConfigurationError(
        message=f"No API key configured for the {service_name} service.",
        setting_name="llm_api_key"
    )


def create_document_not_found_error(document_id: str) -> MetadataStoreError:
    """Create a document not found error"""
    return MetadataStoreError(
        message=f"Document '{document_id}' does not exist.",
        collection="documents",
        record_id=document_id,
        error_code=ErrorCode.DOCUMENT_NOT_FOUND
    )
