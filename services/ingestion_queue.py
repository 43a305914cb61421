"""
Upload ingestion queue for the Document Intelligence Engine

Every accepted file becomes an UploadQueueItem that moves through
extract -> classify -> upload -> persist on its own; one item failing
never blocks or alters the others.
"""
import logging
import os
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait as wait_for_futures
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from config import settings
from models.document import Document
from models.upload import QueueEvent, UploadQueueItem, UploadStatus, UPLOAD_TRANSITIONS
from services.pdf_processor import PDFProcessor
from services.storage import MetadataStore, ObjectStorage
from services.subject_classifier import SubjectClassifier
from utils.exceptions import ErrorCode, ServiceUnavailableError, ValidationError
from utils.error_handlers import handle_service_degradation, log_processing_step, log_performance_metric

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
DOCUMENTS_COLLECTION = "documents"


@dataclass
class SourceFile:
    """A file handed to the queue"""
    name: str
    data: bytes
    content_type: Optional[str] = PDF_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_pdf(self) -> bool:
        if self.content_type:
            return self.content_type == PDF_CONTENT_TYPE
        return self.name.lower().endswith(".pdf")


class _ItemFailure(Exception):
    """Stops one item's pipeline with a classified error"""

    def __init__(self, error_code: ErrorCode, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def build_storage_path(user_id: str, subject: str, filename: str, timestamp_ms: Optional[int] = None,
                       unique_id: Optional[str] = None) -> str:
    """
    documents/{user_id}/{subject}/{base}_{millis}[_{unique_id}]{ext}

    The queue passes a prefix of the item id as ``unique_id`` so that files
    with the same name handled in the same millisecond never share a locator.
    """
    base, extension = os.path.splitext(filename)
    base = base or filename
    stamp = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    safe_subject = subject.replace("/", "_")
    suffix = f"_{unique_id}" if unique_id else ""
    return f"documents/{user_id}/{safe_subject}/{base}_{stamp}{suffix}{extension}"


class IngestionQueue:
    """
    Runs uploaded files through the ingestion pipeline.

    Items live in a dict keyed by their id; ``_order`` only drives display.
    All item state changes go through ``_update_item`` under one lock and are
    published to subscribers as QueueEvents.
    """

    def __init__(
        self,
        classifier: SubjectClassifier,
        storage: ObjectStorage,
        metadata_store: MetadataStore,
        pdf_processor: Optional[PDFProcessor] = None,
        max_workers: Optional[int] = None,
        completed_grace_seconds: Optional[float] = None,
        auto_prune: bool = True
    ):
        """
        Initialize the ingestion queue

        Args:
            classifier: Subject classifier used for every file
            storage: Object storage receiving file bytes
            metadata_store: Store receiving Document records
            pdf_processor: Text extractor for classification samples
            max_workers: Files processed at once (1 keeps submission order)
            completed_grace_seconds: How long completed items stay visible
            auto_prune: Schedule removal of completed items after the grace period
        """
        self.classifier = classifier
        self.storage = storage
        self.metadata_store = metadata_store
        self.pdf_processor = pdf_processor or PDFProcessor()
        self.max_workers = max_workers or settings.max_concurrent_uploads
        self.completed_grace_seconds = (
            settings.completed_item_grace_seconds if completed_grace_seconds is None else completed_grace_seconds
        )
        self.auto_prune = auto_prune

        self._items: Dict[str, UploadQueueItem] = {}
        self._order: List[str] = []
        self._subscribers: List[queue.Queue] = []
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ingestion")
        self._timers: List[threading.Timer] = []
        self._closed = False

    # Subscriptions

    def subscribe(self) -> "queue.Queue[QueueEvent]":
        """Return a new event stream receiving every subsequent item change"""
        events: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.append(events)
        return events

    def unsubscribe(self, events: queue.Queue) -> None:
        with self._lock:
            if events in self._subscribers:
                self._subscribers.remove(events)

    def _publish(self, item: UploadQueueItem, removed: bool = False) -> None:
        event = QueueEvent(
            item_id=item.id,
            status=item.status,
            progress=item.progress,
            item=item.model_copy(),
            removed=removed
        )
        for events in self._subscribers:
            events.put(event)

    # Item state

    def _update_item(self, item_id: str, **changes) -> Optional[UploadQueueItem]:
        """Apply changes to one item by id, enforcing status transitions"""
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                logger.warning(f"Queue item {item_id} not found for update")
                return None

            new_status = changes.get("status")
            if new_status is not None and new_status != item.status:
                if new_status not in UPLOAD_TRANSITIONS[item.status]:
                    raise ValidationError(
                        f"Invalid upload transition {item.status.value} -> {new_status.value}",
                        field_name="status",
                        field_value=new_status.value
                    )

            updated = item.model_copy(update=changes)
            self._items[item_id] = updated
            self._publish(updated)
            return updated

    def _fail_item(self, item_id: str, error_code: ErrorCode, message: str) -> None:
        logger.error(f"Upload item {item_id} failed ({error_code.value}): {message}")
        self._update_item(
            item_id,
            status=UploadStatus.FAILED,
            progress=0.0,
            error_code=error_code.value,
            error_message=message
        )

    def get_item(self, item_id: str) -> Optional[UploadQueueItem]:
        with self._lock:
            item = self._items.get(item_id)
            return item.model_copy() if item else None

    def snapshot(self) -> List[UploadQueueItem]:
        """Copies of every visible item, newest batch first"""
        with self._lock:
            return [self._items[item_id].model_copy() for item_id in self._order]

    def _remove_item(self, item_id: str) -> None:
        item = self._items.pop(item_id)
        self._order.remove(item_id)
        self._publish(item, removed=True)

    def dismiss(self, item_id: str) -> bool:
        """
        Remove a finished item from the queue

        Returns:
            False when no such item exists

        Raises:
            ValidationError: If the item is still in flight
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return False
            if not item.status.is_terminal:
                raise ValidationError(
                    "Only completed or failed uploads can be dismissed",
                    field_name="status",
                    field_value=item.status.value
                )
            self._remove_item(item_id)
            return True

    def prune_completed(self, now: Optional[datetime] = None) -> int:
        """Remove completed items older than the grace period; failed items stay"""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.completed_grace_seconds)
        with self._lock:
            expired = [
                item_id for item_id in self._order
                if self._items[item_id].status == UploadStatus.COMPLETED
                and self._items[item_id].completed_at is not None
                and self._items[item_id].completed_at <= cutoff
            ]
            for item_id in expired:
                self._remove_item(item_id)
        if expired:
            logger.debug(f"Pruned {len(expired)} completed uploads")
        return len(expired)

    def schedule_prune(self, delay: Optional[float] = None) -> threading.Timer:
        """Arm a timer that prunes completed items once their grace period ends"""
        timer = threading.Timer(
            self.completed_grace_seconds if delay is None else delay,
            self.prune_completed
        )
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()] + [timer]
        timer.start()
        return timer

    # Pipeline

    def submit(
        self,
        files: Sequence[SourceFile],
        user_id: str,
        known_subjects: Sequence[str],
        wait: bool = True
    ) -> List[UploadQueueItem]:
        """
        Accept a batch of files and run each through the pipeline

        Non-PDF files are skipped. New items are shown ahead of older ones.

        Args:
            files: Files to ingest
            user_id: Owner of the created documents
            known_subjects: Subject vocabulary for classification
            wait: Block until every item of the batch is terminal

        Returns:
            Item snapshots, terminal when ``wait`` is true
        """
        accepted = [f for f in files if f.is_pdf]
        skipped = len(files) - len(accepted)
        if skipped:
            logger.warning(f"Skipped {skipped} non-PDF files")
        if not accepted:
            return []

        new_items = [
            UploadQueueItem(filename=f.name, size=f.size, content_type=f.content_type)
            for f in accepted
        ]
        with self._lock:
            if self._closed:
                raise ServiceUnavailableError("Ingestion queue has been shut down", service_name="ingestion_queue")
            for item in new_items:
                self._items[item.id] = item
                self._publish(item)
            self._order = [item.id for item in new_items] + self._order

        subjects = list(known_subjects)
        futures = []
        for item, source in zip(new_items, accepted):
            try:
                futures.append(self._executor.submit(self._process_item, item.id, source, user_id, subjects))
            except RuntimeError:
                # shutdown() raced this batch
                self._fail_item(item.id, ErrorCode.SERVICE_UNAVAILABLE, "Ingestion queue is shut down.")
        if wait:
            wait_for_futures(futures)

        return [self.get_item(item.id) or item for item in new_items]

    def _extract_text(self, source: SourceFile) -> str:
        try:
            return self.pdf_processor.extract_classification_text(
                source.data,
                max_pages=settings.classification_max_pages,
                max_words=settings.classification_word_budget,
                filename=source.name
            )
        except Exception as e:
            logger.warning(f"Could not read text from {source.name}: {e}")
            return ""

    def _classify(self, text: str, known_subjects: List[str]) -> str:
        try:
            return self.classifier.classify(text, known_subjects)
        except Exception as e:
            handle_service_degradation("subject_classifier", e)
            return self.classifier.fallback

    def _process_item(self, item_id: str, source: SourceFile, user_id: str,
                      known_subjects: List[str]) -> Optional[Document]:
        start_time = time.time()
        try:
            self._update_item(item_id, status=UploadStatus.PROCESSING)
            log_processing_step("ingestion_extract", {"item_id": item_id, "filename": source.name})
            text = self._extract_text(source)

            subject = self._classify(text, known_subjects)
            self._update_item(item_id, subject=subject)

            self._update_item(item_id, status=UploadStatus.UPLOADING, progress=0.0)
            document = self._upload_and_persist(item_id, source, user_id, subject)

            self._update_item(
                item_id,
                status=UploadStatus.COMPLETED,
                progress=100.0,
                document_id=document.id,
                completed_at=datetime.now(timezone.utc)
            )
        except _ItemFailure as failure:
            self._fail_item(item_id, failure.error_code, failure.message)
            return None
        except Exception as e:
            logger.exception(f"Unexpected failure ingesting {source.name}")
            self._fail_item(item_id, ErrorCode.DOCUMENT_PROCESSING_FAILED, f"Processing failed: {e}")
            return None

        duration_ms = int((time.time() - start_time) * 1000)
        log_performance_metric("document_ingestion", duration_ms, {"filename": source.name, "subject": subject})
        if self.auto_prune:
            self.schedule_prune()
        return document

    def _upload_and_persist(self, item_id: str, source: SourceFile, user_id: str, subject: str) -> Document:
        storage_path = build_storage_path(user_id, subject, source.name, unique_id=item_id[:8])

        def on_progress(transferred: int, total: int) -> None:
            percent = 100.0 if total == 0 else min(100.0, transferred / total * 100.0)
            self._update_item(item_id, progress=percent)

        # Never write over, or clean up, an object another item owns
        if self.storage.exists(storage_path):
            logger.error(f"Storage path {storage_path} already in use, refusing to overwrite")
            raise _ItemFailure(ErrorCode.FILE_UPLOAD_FAILED, "Upload failed.")

        try:
            locator = self.storage.put(storage_path, source.data, progress_callback=on_progress)
            url = self.storage.get_download_url(locator)
        except Exception as e:
            logger.error(f"Error uploading {source.name}: {e}")
            self._delete_orphan(storage_path)
            raise _ItemFailure(ErrorCode.FILE_UPLOAD_FAILED, "Upload failed.") from e

        # Transfer is done; progress must read exactly 100 before completion
        self._update_item(item_id, progress=100.0)

        document = Document(
            user_id=user_id,
            subject=subject,
            storage_path=locator,
            url=url,
            name=os.path.basename(locator),
            original_name=source.name,
            size=source.size,
            content_type=source.content_type,
            is_external=False
        )
        try:
            document_id = self.metadata_store.create(DOCUMENTS_COLLECTION, document.to_record())
        except Exception as e:
            logger.error(f"Error saving metadata for {source.name}: {e}")
            self._delete_orphan(locator)
            raise _ItemFailure(ErrorCode.METADATA_WRITE_FAILED, "Failed to save document data.") from e

        return document.model_copy(update={"id": document_id})

    def _delete_orphan(self, locator: str) -> None:
        """Best-effort removal of an object whose metadata was never written"""
        try:
            if self.storage.exists(locator):
                self.storage.delete(locator)
                logger.info(f"Orphaned file {locator} deleted")
        except Exception as e:
            logger.error(f"Failed to delete orphaned file {locator}: {e}")

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
        with self._lock:
            for timer in self._timers:
                timer.cancel()
            self._timers = []
