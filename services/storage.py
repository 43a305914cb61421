"""
Object storage and metadata store adapters

The ingestion pipeline and the document catalog depend only on the
ObjectStorage and MetadataStore interfaces below.
"""
import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional

from config import settings
from utils.exceptions import ErrorCode, MetadataStoreError, StorageError

logger = logging.getLogger(__name__)

# Called with (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]


def _validate_path(path: str) -> str:
    """Reject absolute paths and parent references"""
    pure = PurePosixPath(path)
    if not path or pure.is_absolute() or ".." in pure.parts:
        raise StorageError(f"Invalid storage path: {path!r}", locator=path, operation="put")
    return str(pure)


def _iter_slices(data: bytes, slice_size: int):
    for offset in range(0, len(data), slice_size):
        yield data[offset:offset + slice_size]


class ObjectStorage(ABC):
    """Abstract interface for binary object storage"""

    def __init__(self, slice_size: Optional[int] = None):
        self.slice_size = slice_size or settings.upload_chunk_size_bytes

    @abstractmethod
    def put(self, path: str, data: bytes, progress_callback: Optional[ProgressCallback] = None) -> str:
        """Store bytes under path and return the object's locator"""
        pass

    @abstractmethod
    def get_download_url(self, locator: str) -> str:
        """URL from which the stored object can be fetched"""
        pass

    @abstractmethod
    def delete(self, locator: str) -> None:
        """Remove a stored object"""
        pass

    @abstractmethod
    def exists(self, locator: str) -> bool:
        pass

    def _transfer(self, data: bytes, write: Callable[[bytes], None],
                  progress_callback: Optional[ProgressCallback]) -> None:
        """Write data in slices, reporting progress after each one"""
        total = len(data)
        transferred = 0
        if progress_callback and total == 0:
            progress_callback(0, 0)
        for piece in _iter_slices(data, self.slice_size):
            write(piece)
            transferred += len(piece)
            if progress_callback:
                progress_callback(transferred, total)


class InMemoryObjectStorage(ObjectStorage):
    """Object storage kept in a dictionary, for tests and dry runs"""

    def __init__(self, slice_size: Optional[int] = None):
        super().__init__(slice_size)
        self._objects: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, path: str, data: bytes, progress_callback: Optional[ProgressCallback] = None) -> str:
        locator = _validate_path(path)
        buffer = bytearray()
        self._transfer(data, buffer.extend, progress_callback)
        with self._lock:
            self._objects[locator] = bytes(buffer)
        return locator

    def get(self, locator: str) -> bytes:
        with self._lock:
            if locator not in self._objects:
                raise StorageError(f"Object not found: {locator}", locator=locator,
                                   operation="get", error_code=ErrorCode.OBJECT_NOT_FOUND)
            return self._objects[locator]

    def get_download_url(self, locator: str) -> str:
        if not self.exists(locator):
            raise StorageError(f"Object not found: {locator}", locator=locator,
                               operation="get_download_url", error_code=ErrorCode.OBJECT_NOT_FOUND)
        return f"memory://{locator}"

    def delete(self, locator: str) -> None:
        with self._lock:
            if self._objects.pop(locator, None) is None:
                raise StorageError(f"Object not found: {locator}", locator=locator,
                                   operation="delete", error_code=ErrorCode.OBJECT_NOT_FOUND)

    def exists(self, locator: str) -> bool:
        with self._lock:
            return locator in self._objects


class LocalObjectStorage(ObjectStorage):
    """Object storage on the local filesystem under a root directory"""

    def __init__(self, root_directory: Optional[str] = None, slice_size: Optional[int] = None):
        super().__init__(slice_size)
        self.root = Path(root_directory or settings.storage_directory).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, locator: str) -> Path:
        return self.root / _validate_path(locator)

    def put(self, path: str, data: bytes, progress_callback: Optional[ProgressCallback] = None) -> str:
        locator = _validate_path(path)
        target = self._resolve(locator)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as handle:
                self._transfer(data, handle.write, progress_callback)
        except OSError as e:
            logger.error(f"Failed to write {target}: {e}")
            target.unlink(missing_ok=True)
            raise StorageError(f"Failed to store object: {e}", locator=locator,
                               operation="put", original_exception=e) from e
        logger.debug(f"Stored {len(data)} bytes at {target}")
        return locator

    def get_download_url(self, locator: str) -> str:
        target = self._resolve(locator)
        if not target.exists():
            raise StorageError(f"Object not found: {locator}", locator=locator,
                               operation="get_download_url", error_code=ErrorCode.OBJECT_NOT_FOUND)
        return target.as_uri()

    def delete(self, locator: str) -> None:
        target = self._resolve(locator)
        try:
            target.unlink()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {locator}", locator=locator, operation="delete",
                               error_code=ErrorCode.OBJECT_NOT_FOUND, original_exception=e) from e
        except OSError as e:
            raise StorageError(f"Failed to delete object: {e}", locator=locator, operation="delete",
                               error_code=ErrorCode.STORAGE_DELETE_FAILED, original_exception=e) from e

    def exists(self, locator: str) -> bool:
        return self._resolve(locator).is_file()


class MetadataStore(ABC):
    """Abstract interface for a document-style metadata store"""

    @abstractmethod
    def create(self, collection: str, record: Dict[str, Any]) -> str:
        """Insert a record and return its generated id"""
        pass

    @abstractmethod
    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one record (with its ``id``) or None"""
        pass

    @abstractmethod
    def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Records whose fields equal every filter value, each including ``id``"""
        pass

    @abstractmethod
    def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        """Remove a record; False when it did not exist"""
        pass


class InMemoryMetadataStore(MetadataStore):
    """Thread-safe metadata store kept in process memory"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def create(self, collection: str, record: Dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        with self._lock:
            self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(record)
        return record_id

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            if record is None:
                return None
            return {**copy.deepcopy(record), "id": record_id}

    def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        with self._lock:
            return [
                {**copy.deepcopy(record), "id": record_id}
                for record_id, record in self._collections.get(collection, {}).items()
                if all(record.get(key) == value for key, value in filters.items())
            ]

    def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> None:
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
            if record is None:
                raise MetadataStoreError(
                    f"Record '{record_id}' does not exist",
                    collection=collection,
                    record_id=record_id,
                    error_code=ErrorCode.DOCUMENT_NOT_FOUND
                )
            record.update(copy.deepcopy(changes))

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(record_id, None) is not None
