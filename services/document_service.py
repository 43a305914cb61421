"""
Document catalog for the Document Intelligence Engine

Manages persisted Document records, the user's subject vocabulary and
submitted quiz attempts on top of the metadata store and object storage.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from config import settings
from models.document import Document
from models.quiz import QuizAttempt
from services.storage import MetadataStore, ObjectStorage
from utils.exceptions import (
    ErrorCode, ValidationError, create_document_not_found_error
)

logger = logging.getLogger(__name__)

DOCUMENTS_COLLECTION = "documents"
SUBJECTS_COLLECTION = "subjects"
QUIZ_ATTEMPTS_COLLECTION = "quizAttempts"


class DocumentCatalog:
    """Read and maintain a user's documents, subjects and quiz history"""

    def __init__(self, metadata_store: MetadataStore, storage: ObjectStorage):
        """
        Initialize the document catalog

        Args:
            metadata_store: Store holding documents, subjects and quiz attempts
            storage: Object storage holding uploaded files
        """
        self.metadata_store = metadata_store
        self.storage = storage
        self.default_subject = settings.default_subject
        self.external_subject = settings.external_subject

    @property
    def reserved_subjects(self) -> List[str]:
        return [self.default_subject, self.external_subject]

    # Documents

    def list_documents(self, user_id: str) -> Dict[str, List[Document]]:
        """
        Documents of a user grouped by subject.

        Subjects are sorted by name with the external subject last; documents
        within a subject are newest first.
        """
        records = self.metadata_store.query(DOCUMENTS_COLLECTION, {"user_id": user_id})
        grouped: Dict[str, List[Document]] = {}
        for record in records:
            document = Document.from_record(record["id"], record)
            grouped.setdefault(document.subject or self.default_subject, []).append(document)

        for documents in grouped.values():
            documents.sort(key=lambda d: d.uploaded_at, reverse=True)

        ordered = OrderedDict()
        for subject in sorted(s for s in grouped if s != self.external_subject):
            ordered[subject] = grouped[subject]
        if self.external_subject in grouped:
            ordered[self.external_subject] = grouped[self.external_subject]
        return ordered

    def get_document(self, document_id: str) -> Document:
        """
        Raises:
            MetadataStoreError: If the document does not exist
        """
        record = self.metadata_store.get(DOCUMENTS_COLLECTION, document_id)
        if record is None:
            raise create_document_not_found_error(document_id)
        return Document.from_record(document_id, record)

    def delete_document(self, document_id: str) -> Document:
        """
        Delete a document record, then its stored file unless it is external.

        A failure to remove the stored file is logged; the record stays deleted.
        """
        document = self.get_document(document_id)
        self.metadata_store.delete(DOCUMENTS_COLLECTION, document_id)

        if not document.is_external and document.storage_path:
            try:
                self.storage.delete(document.storage_path)
            except Exception as e:
                logger.error(f"Failed to delete file from storage ({document.storage_path}), "
                             f"but the document record was deleted: {e}")

        logger.info(f"Deleted document {document_id} ({document.original_name})")
        return document

    def reclassify_document(self, document_id: str, subject: str) -> Document:
        """Move an uploaded document to another subject"""
        subject = (subject or "").strip()
        if not subject:
            raise ValidationError("Subject cannot be empty", field_name="subject")

        document = self.get_document(document_id)
        if document.is_external or subject == self.external_subject:
            raise ValidationError(
                f"Only uploaded documents can be filed outside {self.external_subject!r}",
                field_name="subject",
                field_value=subject
            )

        self.metadata_store.update(DOCUMENTS_COLLECTION, document_id, {"subject": subject})
        return document.model_copy(update={"subject": subject})

    def add_external_document(self, user_id: str, title: str, url: str,
                              source: Optional[str] = None) -> Document:
        """
        Save a link to an external PDF under the external subject

        Raises:
            ValidationError: If the title or URL is empty, or the URL is already saved
        """
        title = (title or "").strip()
        url = (url or "").strip()
        if not title or not url:
            raise ValidationError("External documents need a title and a URL", field_name="url", field_value=url)

        existing = self.metadata_store.query(DOCUMENTS_COLLECTION, {
            "user_id": user_id,
            "subject": self.external_subject,
            "url": url
        })
        if existing:
            raise ValidationError(
                f'"{title}" is already saved in {self.external_subject}.',
                field_name="url",
                field_value=url,
                error_code=ErrorCode.DUPLICATE_DOCUMENT
            )

        document = Document(
            user_id=user_id,
            subject=self.external_subject,
            storage_path=None,
            url=url,
            name=title[:255],
            original_name=title[:255],
            is_external=True,
            source=source or urlparse(url).hostname
        )
        document_id = self.metadata_store.create(DOCUMENTS_COLLECTION, document.to_record())
        logger.info(f"Added external document {title!r} for user {user_id}")
        return document.model_copy(update={"id": document_id})

    # Subjects

    def list_subjects(self, user_id: str) -> List[str]:
        """User-defined subject names, sorted"""
        records = self.metadata_store.query(SUBJECTS_COLLECTION, {"user_id": user_id})
        return sorted(record["name"] for record in records)

    def add_subject(self, user_id: str, name: str) -> str:
        """
        Create a subject

        Raises:
            ValidationError: If the name is empty, already exists
                (case-insensitive) or is reserved
        """
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Subject name cannot be empty", field_name="name")

        lowered = trimmed.casefold()
        if lowered in (s.casefold() for s in self.reserved_subjects):
            raise ValidationError(
                f'Cannot create a subject with the reserved name "{trimmed}".',
                field_name="name",
                field_value=trimmed,
                error_code=ErrorCode.RESERVED_SUBJECT
            )
        if lowered in (s.casefold() for s in self.list_subjects(user_id)):
            raise ValidationError(
                f'Subject "{trimmed}" already exists.',
                field_name="name",
                field_value=trimmed,
                error_code=ErrorCode.DUPLICATE_SUBJECT
            )

        self.metadata_store.create(SUBJECTS_COLLECTION, {
            "name": trimmed,
            "user_id": user_id,
            "created_at": datetime.now(timezone.utc).isoformat()
        })
        return trimmed

    # Quiz attempts

    def record_quiz_attempt(self, attempt: QuizAttempt) -> str:
        """Persist a submitted quiz and return its record id"""
        attempt_id = self.metadata_store.create(QUIZ_ATTEMPTS_COLLECTION, attempt.to_record())
        logger.info(f"Saved quiz attempt {attempt_id}: {attempt.score}/{attempt.total_questions}")
        return attempt_id

    def list_quiz_attempts(self, user_id: str, document_id: Optional[str] = None) -> List[QuizAttempt]:
        """Attempts of a user, optionally for one document, newest first"""
        filters = {"user_id": user_id}
        if document_id is not None:
            filters["document_id"] = document_id
        attempts = [
            QuizAttempt.model_validate(record)
            for record in self.metadata_store.query(QUIZ_ATTEMPTS_COLLECTION, filters)
        ]
        return sorted(attempts, key=lambda a: a.submitted_at, reverse=True)
