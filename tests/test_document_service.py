"""
Tests for the DocumentCatalog
"""
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock

from models.document import Document
from models.quiz import QuizAttempt, QuizQuestion, QuestionResult
from services.document_service import DocumentCatalog
from services.storage import InMemoryMetadataStore, InMemoryObjectStorage
from utils.exceptions import ErrorCode, MetadataStoreError, StorageError, ValidationError


def uploaded(user_id, subject, name, minutes_ago=0, storage_path=None):
    return Document(
        user_id=user_id,
        subject=subject,
        storage_path=storage_path or f"documents/{user_id}/{subject}/{name}",
        url=f"memory://documents/{user_id}/{subject}/{name}",
        name=name,
        original_name=name,
        uploaded_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    )


def attempt(user_id="u1", document_id="doc-1", minutes_ago=0):
    question = QuizQuestion(
        ordinal=1,
        prompt_text="Question?",
        options={"A": "yes", "B": "no"},
        correct_letter="A",
        explanation="Because."
    )
    return QuizAttempt(
        user_id=user_id,
        document_id=document_id,
        page_number=1,
        questions={1: question},
        selections={1: "A"},
        results={1: QuestionResult(correct=True, correct_letter="A", explanation="Because.")},
        score=1,
        total_questions=1,
        submitted_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
    )


class TestDocumentCatalog:
    """Test cases for DocumentCatalog"""

    def setup_method(self):
        """Set up test fixtures"""
        self.metadata_store = InMemoryMetadataStore()
        self.storage = InMemoryObjectStorage()
        self.catalog = DocumentCatalog(self.metadata_store, self.storage)

    def _store(self, document):
        if document.storage_path:
            self.storage.put(document.storage_path, b"%PDF")
        return self.metadata_store.create("documents", document.to_record())

    def test_list_documents_grouped_and_sorted(self):
        self._store(uploaded("u1", "Physics", "old.pdf", minutes_ago=10))
        self._store(uploaded("u1", "Physics", "new.pdf", minutes_ago=1))
        self._store(uploaded("u1", "Biology", "cells.pdf"))
        self._store(uploaded("u2", "Chemistry", "other-user.pdf"))
        self.catalog.add_external_document("u1", "Open textbook", "https://example.org/book.pdf")

        grouped = self.catalog.list_documents("u1")

        assert list(grouped) == ["Biology", "Physics", "External Resources"]
        assert [d.name for d in grouped["Physics"]] == ["new.pdf", "old.pdf"]
        assert all(d.id for docs in grouped.values() for d in docs)

    def test_get_missing_document(self):
        with pytest.raises(MetadataStoreError) as exc_info:
            self.catalog.get_document("missing")

        assert exc_info.value.error_code == ErrorCode.DOCUMENT_NOT_FOUND

    def test_delete_document_removes_file(self):
        document = uploaded("u1", "Biology", "cells.pdf")
        document_id = self._store(document)

        deleted = self.catalog.delete_document(document_id)

        assert deleted.id == document_id
        assert self.metadata_store.get("documents", document_id) is None
        assert not self.storage.exists(document.storage_path)

    def test_delete_survives_storage_failure(self):
        storage = Mock()
        storage.delete.side_effect = StorageError("bucket unavailable")
        catalog = DocumentCatalog(self.metadata_store, storage)
        document_id = self.metadata_store.create("documents", uploaded("u1", "Biology", "cells.pdf").to_record())

        catalog.delete_document(document_id)

        assert self.metadata_store.get("documents", document_id) is None

    def test_delete_external_document_skips_storage(self):
        storage = Mock()
        catalog = DocumentCatalog(self.metadata_store, storage)
        document = catalog.add_external_document("u1", "Paper", "https://example.org/paper.pdf")

        catalog.delete_document(document.id)

        storage.delete.assert_not_called()

    def test_reclassify(self):
        document_id = self._store(uploaded("u1", "Biology", "cells.pdf"))

        updated = self.catalog.reclassify_document(document_id, " Chemistry ")

        assert updated.subject == "Chemistry"
        assert self.catalog.get_document(document_id).subject == "Chemistry"

    def test_reclassify_rules(self):
        document_id = self._store(uploaded("u1", "Biology", "cells.pdf"))
        external = self.catalog.add_external_document("u1", "Paper", "https://example.org/paper.pdf")

        with pytest.raises(ValidationError):
            self.catalog.reclassify_document(document_id, "  ")
        with pytest.raises(ValidationError):
            self.catalog.reclassify_document(document_id, "External Resources")
        with pytest.raises(ValidationError):
            self.catalog.reclassify_document(external.id, "Biology")

    def test_add_external_document(self):
        document = self.catalog.add_external_document("u1", "Open textbook", "https://books.example.org/a.pdf")

        assert document.is_external
        assert document.storage_path is None
        assert document.subject == "External Resources"
        assert document.source == "books.example.org"
        assert self.catalog.get_document(document.id).url == "https://books.example.org/a.pdf"

    def test_duplicate_external_document(self):
        self.catalog.add_external_document("u1", "Paper", "https://example.org/paper.pdf")

        with pytest.raises(ValidationError) as exc_info:
            self.catalog.add_external_document("u1", "Same paper", "https://example.org/paper.pdf")

        assert exc_info.value.error_code == ErrorCode.DUPLICATE_DOCUMENT
        # Another user may save the same link
        self.catalog.add_external_document("u2", "Paper", "https://example.org/paper.pdf")

    def test_subjects(self):
        assert self.catalog.add_subject("u1", "  Physics ") == "Physics"
        self.catalog.add_subject("u1", "Biology")
        self.catalog.add_subject("u2", "Art")

        assert self.catalog.list_subjects("u1") == ["Biology", "Physics"]

    @pytest.mark.parametrize("name,error_code", [
        ("physics", ErrorCode.DUPLICATE_SUBJECT),
        ("uncategorized", ErrorCode.RESERVED_SUBJECT),
        ("External Resources", ErrorCode.RESERVED_SUBJECT),
        ("   ", ErrorCode.VALIDATION_ERROR),
    ])
    def test_subject_rejections(self, name, error_code):
        self.catalog.add_subject("u1", "Physics")

        with pytest.raises(ValidationError) as exc_info:
            self.catalog.add_subject("u1", name)

        assert exc_info.value.error_code == error_code

    def test_quiz_attempts(self):
        self.catalog.record_quiz_attempt(attempt(minutes_ago=5))
        latest_id = self.catalog.record_quiz_attempt(attempt(minutes_ago=1))
        self.catalog.record_quiz_attempt(attempt(document_id="doc-2"))
        self.catalog.record_quiz_attempt(attempt(user_id="u2"))

        assert latest_id
        history = self.catalog.list_quiz_attempts("u1", document_id="doc-1")
        assert len(history) == 2
        assert history[0].submitted_at > history[1].submitted_at
        assert history[0].questions[1].correct_letter == "A"
        assert len(self.catalog.list_quiz_attempts("u1")) == 3
