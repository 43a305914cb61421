"""
Data models for the Document Intelligence Engine
"""

from .document import Document, Chunk
from .question import Answer
from .quiz import QuizQuestion, QuestionResult, QuizOptions, QuizAttempt, OPTION_LETTERS
from .upload import UploadStatus, UploadQueueItem, QueueEvent, UPLOAD_TRANSITIONS

__all__ = [
    # Document models
    "Document",
    "Chunk",

    # Question/Answer models
    "Answer",

    # Quiz models
    "QuizQuestion",
    "QuestionResult",
    "QuizOptions",
    "QuizAttempt",
    "OPTION_LETTERS",

    # Upload queue models
    "UploadStatus",
    "UploadQueueItem",
    "QueueEvent",
    "UPLOAD_TRANSITIONS",
]
