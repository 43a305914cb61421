"""
Tests for the upload ingestion queue
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock, patch

from models.upload import UploadStatus
from services.ingestion_queue import IngestionQueue, SourceFile, build_storage_path
from services.storage import InMemoryMetadataStore, InMemoryObjectStorage
from utils.exceptions import ErrorCode, MetadataStoreError, ServiceUnavailableError, StorageError, ValidationError

PDF_BYTES = b"%PDF-1.4 fake document body"


def pdf(name):
    return SourceFile(name=name, data=PDF_BYTES)


def drain(events):
    collected = []
    while not events.empty():
        collected.append(events.get_nowait())
    return collected


class FlakyMetadataStore(InMemoryMetadataStore):
    """Refuses to store documents with a given original name"""

    def __init__(self, reject_name):
        super().__init__()
        self.reject_name = reject_name

    def create(self, collection, record):
        if record.get("original_name") == self.reject_name:
            raise MetadataStoreError("write refused", collection=collection)
        return super().create(collection, record)


class FlakyObjectStorage(InMemoryObjectStorage):
    """Refuses uploads whose path contains a marker"""

    def __init__(self, reject_marker, slice_size=4):
        super().__init__(slice_size)
        self.reject_marker = reject_marker

    def put(self, path, data, progress_callback=None):
        if self.reject_marker in path:
            raise StorageError("bucket unavailable", locator=path)
        return super().put(path, data, progress_callback)


@pytest.fixture
def classifier():
    classifier = Mock()
    classifier.fallback = "Uncategorized"
    classifier.classify.return_value = "Biology"
    return classifier


@pytest.fixture
def pdf_processor():
    processor = Mock()
    processor.extract_classification_text.return_value = "cells and tissues"
    return processor


def make_queue(classifier, pdf_processor, storage=None, metadata_store=None, **kwargs):
    kwargs.setdefault("auto_prune", False)
    kwargs.setdefault("max_workers", 1)
    return IngestionQueue(
        classifier=classifier,
        storage=storage or InMemoryObjectStorage(slice_size=4),
        metadata_store=metadata_store or InMemoryMetadataStore(),
        pdf_processor=pdf_processor,
        **kwargs
    )


class TestBuildStoragePath:

    def test_layout(self):
        assert build_storage_path("u1", "Biology", "cells.pdf", 123) == "documents/u1/Biology/cells_123.pdf"

    def test_subject_slashes_replaced(self):
        assert build_storage_path("u1", "A/B", "x.pdf", 1) == "documents/u1/A_B/x_1.pdf"

    def test_unique_suffix(self):
        path = build_storage_path("u1", "Biology", "cells.pdf", 123, unique_id="ab12cd34")

        assert path == "documents/u1/Biology/cells_123_ab12cd34.pdf"


class TestIngestionQueue:
    """Test the per-item ingestion pipeline"""

    def test_successful_ingestion(self, classifier, pdf_processor, object_storage, metadata_store):
        ingestion = make_queue(classifier, pdf_processor, object_storage, metadata_store)

        items = ingestion.submit([pdf("cells.pdf")], user_id="u1", known_subjects=["Biology", "Physics"])

        item = items[0]
        assert item.status == UploadStatus.COMPLETED
        assert item.progress == 100.0
        assert item.subject == "Biology"
        assert item.document_id is not None
        assert item.completed_at is not None

        record = metadata_store.get("documents", item.document_id)
        assert record["original_name"] == "cells.pdf"
        assert record["subject"] == "Biology"
        assert record["user_id"] == "u1"
        assert record["url"] == f"memory://{record['storage_path']}"
        assert object_storage.get(record["storage_path"]) == PDF_BYTES
        classifier.classify.assert_called_once_with("cells and tissues", ["Biology", "Physics"])
        ingestion.shutdown()

    def test_classifier_failure_isolated(self, classifier, pdf_processor, metadata_store):
        classifier.classify.side_effect = ["Biology", RuntimeError("classifier crashed"), "Physics"]
        ingestion = make_queue(classifier, pdf_processor, metadata_store=metadata_store)

        items = ingestion.submit([pdf("a.pdf"), pdf("b.pdf"), pdf("c.pdf")], user_id="u1", known_subjects=["Biology"])

        assert [item.status for item in items] == [UploadStatus.COMPLETED] * 3
        assert [item.subject for item in items] == ["Biology", "Uncategorized", "Physics"]
        assert len(metadata_store.query("documents")) == 3
        ingestion.shutdown()

    def test_unreadable_pdf_uses_fallback_subject(self, classifier, pdf_processor):
        pdf_processor.extract_classification_text.side_effect = ValueError("not a pdf")
        classifier.classify.side_effect = lambda text, subjects: "Biology" if text else "Uncategorized"
        ingestion = make_queue(classifier, pdf_processor)

        item = ingestion.submit([pdf("broken.pdf")], user_id="u1", known_subjects=["Biology"])[0]

        assert item.status == UploadStatus.COMPLETED
        assert item.subject == "Uncategorized"
        ingestion.shutdown()

    def test_metadata_failure_removes_uploaded_file(self, classifier, pdf_processor):
        storage = InMemoryObjectStorage(slice_size=4)
        ingestion = make_queue(classifier, pdf_processor, storage, FlakyMetadataStore("bad.pdf"))

        items = ingestion.submit([pdf("good.pdf"), pdf("bad.pdf")], user_id="u1", known_subjects=["Biology"])

        good, bad = items
        assert good.status == UploadStatus.COMPLETED
        assert bad.status == UploadStatus.FAILED
        assert bad.error_code == ErrorCode.METADATA_WRITE_FAILED.value
        assert bad.error_message == "Failed to save document data."
        assert bad.progress == 0.0
        assert list(storage._objects) == [
            ingestion.metadata_store.get("documents", good.document_id)["storage_path"]
        ]
        ingestion.shutdown()

    def test_upload_failure_isolated(self, classifier, pdf_processor, metadata_store):
        ingestion = make_queue(classifier, pdf_processor, FlakyObjectStorage("/broken_"), metadata_store)

        items = ingestion.submit([pdf("fine.pdf"), pdf("broken.pdf")], user_id="u1", known_subjects=[])

        assert items[0].status == UploadStatus.COMPLETED
        assert items[1].status == UploadStatus.FAILED
        assert items[1].error_code == ErrorCode.FILE_UPLOAD_FAILED.value
        assert items[1].error_message == "Upload failed."
        assert len(metadata_store.query("documents")) == 1
        ingestion.shutdown()

    def test_progress_events(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)
        events = ingestion.subscribe()

        item = ingestion.submit([pdf("cells.pdf")], user_id="u1", known_subjects=[])[0]

        history = [event for event in drain(events) if event.item_id == item.id]
        statuses = [event.status for event in history]
        assert statuses[0] == UploadStatus.PENDING
        assert statuses[-1] == UploadStatus.COMPLETED
        assert UploadStatus.PROCESSING in statuses
        assert UploadStatus.UPLOADING in statuses

        uploading = [event.progress for event in history if event.status == UploadStatus.UPLOADING]
        assert uploading == sorted(uploading)
        assert uploading[-1] == 100.0
        assert len(uploading) > 2
        ingestion.shutdown()

    def test_unsubscribe(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)
        events = ingestion.subscribe()
        ingestion.unsubscribe(events)

        ingestion.submit([pdf("cells.pdf")], user_id="u1", known_subjects=[])

        assert events.empty()
        ingestion.shutdown()

    def test_non_pdf_files_skipped(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)
        notes = SourceFile(name="notes.txt", data=b"plain", content_type="text/plain")

        items = ingestion.submit([notes, pdf("cells.pdf")], user_id="u1", known_subjects=[])

        assert [item.filename for item in items] == ["cells.pdf"]
        assert ingestion.submit([notes], user_id="u1", known_subjects=[]) == []
        ingestion.shutdown()

    def test_source_file_type_from_extension(self):
        assert SourceFile(name="x.PDF", data=b"", content_type=None).is_pdf
        assert not SourceFile(name="x.docx", data=b"", content_type=None).is_pdf

    def test_newest_batch_shown_first(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)

        ingestion.submit([pdf("first.pdf")], user_id="u1", known_subjects=[])
        ingestion.submit([pdf("second.pdf"), pdf("third.pdf")], user_id="u1", known_subjects=[])

        assert [item.filename for item in ingestion.snapshot()] == ["second.pdf", "third.pdf", "first.pdf"]
        ingestion.shutdown()

    def test_prune_completed_keeps_failed(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor, FlakyObjectStorage("/bad_"),
                               completed_grace_seconds=10)
        ingestion.submit([pdf("ok.pdf"), pdf("bad.pdf")], user_id="u1", known_subjects=[])

        assert ingestion.prune_completed() == 0
        later = datetime.now(timezone.utc) + timedelta(seconds=11)
        assert ingestion.prune_completed(now=later) == 1

        remaining = ingestion.snapshot()
        assert [item.filename for item in remaining] == ["bad.pdf"]
        assert remaining[0].status == UploadStatus.FAILED
        ingestion.shutdown()

    def test_scheduled_prune(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor, completed_grace_seconds=0)
        ingestion.submit([pdf("ok.pdf")], user_id="u1", known_subjects=[])

        timer = ingestion.schedule_prune(delay=0)
        timer.join(timeout=5)

        assert ingestion.snapshot() == []
        ingestion.shutdown()

    def test_dismiss(self, classifier, pdf_processor):
        release = threading.Event()
        pdf_processor.extract_classification_text.side_effect = lambda *args, **kwargs: release.wait(5) and ""
        ingestion = make_queue(classifier, pdf_processor)

        item = ingestion.submit([pdf("slow.pdf")], user_id="u1", known_subjects=[], wait=False)[0]

        with pytest.raises(ValidationError):
            ingestion.dismiss(item.id)

        release.set()
        ingestion.shutdown(wait=True)

        assert ingestion.dismiss(item.id) is True
        assert ingestion.get_item(item.id) is None
        assert ingestion.dismiss(item.id) is False

    def test_terminal_items_cannot_move(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)
        item = ingestion.submit([pdf("ok.pdf")], user_id="u1", known_subjects=[])[0]

        with pytest.raises(ValidationError):
            ingestion._update_item(item.id, status=UploadStatus.UPLOADING)

        assert ingestion._update_item("missing", progress=5.0) is None
        ingestion.shutdown()

    def test_concurrent_workers_finish_every_item(self, classifier, pdf_processor, metadata_store):
        ingestion = make_queue(classifier, pdf_processor, metadata_store=metadata_store, max_workers=4)

        files = [pdf(f"file{n}.pdf") for n in range(8)]
        items = ingestion.submit(files, user_id="u1", known_subjects=["Biology"])

        assert all(item.status == UploadStatus.COMPLETED for item in items)
        assert len({item.document_id for item in items}) == 8
        assert len(metadata_store.query("documents")) == 8
        ingestion.shutdown()


class RejectNthWriteStore(InMemoryMetadataStore):
    """Refuses the n-th document write"""

    def __init__(self, reject_call):
        super().__init__()
        self.reject_call = reject_call
        self.calls = 0

    def create(self, collection, record):
        self.calls += 1
        if self.calls == self.reject_call:
            raise MetadataStoreError("write refused", collection=collection)
        return super().create(collection, record)


class OccupiedObjectStorage(InMemoryObjectStorage):
    """Reports every path as already taken"""

    def exists(self, locator):
        return True


class TestSameNamedUploads:
    """Same-named files must never share a stored object"""

    FROZEN_SECONDS = 1700000000.0

    def _submit_twice(self, ingestion):
        files = [SourceFile("notes.pdf", b"%PDF first"), SourceFile("notes.pdf", b"%PDF second")]
        with patch("services.ingestion_queue.time") as frozen_time:
            frozen_time.time.return_value = self.FROZEN_SECONDS
            return ingestion.submit(files, user_id="u1", known_subjects=["Biology"])

    def test_each_file_keeps_its_own_bytes(self, classifier, pdf_processor, metadata_store):
        storage = InMemoryObjectStorage(slice_size=4)
        ingestion = make_queue(classifier, pdf_processor, storage, metadata_store)

        first, second = self._submit_twice(ingestion)

        first_path = metadata_store.get("documents", first.document_id)["storage_path"]
        second_path = metadata_store.get("documents", second.document_id)["storage_path"]
        assert first_path != second_path
        assert first_path.startswith("documents/u1/Biology/notes_1700000000000_")
        assert storage.get(first_path) == b"%PDF first"
        assert storage.get(second_path) == b"%PDF second"
        ingestion.shutdown()

    def test_failed_item_cleanup_spares_completed_document(self, classifier, pdf_processor):
        storage = InMemoryObjectStorage(slice_size=4)
        metadata_store = RejectNthWriteStore(reject_call=2)
        ingestion = make_queue(classifier, pdf_processor, storage, metadata_store)

        first, second = self._submit_twice(ingestion)

        assert first.status == UploadStatus.COMPLETED
        assert second.status == UploadStatus.FAILED
        assert second.error_code == ErrorCode.METADATA_WRITE_FAILED.value
        first_path = metadata_store.get("documents", first.document_id)["storage_path"]
        assert list(storage._objects) == [first_path]
        assert storage.get(first_path) == b"%PDF first"
        ingestion.shutdown()

    def test_occupied_path_is_not_overwritten(self, classifier, pdf_processor, metadata_store):
        storage = OccupiedObjectStorage(slice_size=4)
        storage.delete = Mock()
        ingestion = make_queue(classifier, pdf_processor, storage, metadata_store)

        item = ingestion.submit([pdf("notes.pdf")], user_id="u1", known_subjects=[])[0]

        assert item.status == UploadStatus.FAILED
        assert item.error_code == ErrorCode.FILE_UPLOAD_FAILED.value
        assert storage._objects == {}
        storage.delete.assert_not_called()
        assert metadata_store.query("documents") == []
        ingestion.shutdown()


class TestShutdown:

    def test_submit_after_shutdown_is_rejected(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)
        ingestion.shutdown()

        with pytest.raises(ServiceUnavailableError):
            ingestion.submit([pdf("late.pdf")], user_id="u1", known_subjects=[])

        assert ingestion.snapshot() == []

    def test_items_fail_when_executor_refuses_work(self, classifier, pdf_processor):
        ingestion = make_queue(classifier, pdf_processor)

        with patch.object(ingestion._executor, "submit",
                          side_effect=RuntimeError("cannot schedule new futures after shutdown")):
            item = ingestion.submit([pdf("late.pdf")], user_id="u1", known_subjects=[])[0]

        assert item.status == UploadStatus.FAILED
        assert item.error_code == ErrorCode.SERVICE_UNAVAILABLE.value
        assert ingestion.dismiss(item.id) is True
        ingestion.shutdown()
