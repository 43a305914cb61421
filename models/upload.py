"""
Upload queue data models for the Document Intelligence Engine
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
import uuid


class UploadStatus(str, Enum):
    """Lifecycle of a queued upload"""
    PENDING = "pending"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.FAILED)


# Allowed forward transitions; FAILED is reachable from every non-terminal state
UPLOAD_TRANSITIONS = {
    UploadStatus.PENDING: {UploadStatus.PROCESSING, UploadStatus.FAILED},
    UploadStatus.PROCESSING: {UploadStatus.UPLOADING, UploadStatus.FAILED},
    UploadStatus.UPLOADING: {UploadStatus.COMPLETED, UploadStatus.FAILED},
    UploadStatus.COMPLETED: set(),
    UploadStatus.FAILED: set(),
}


class UploadQueueItem(BaseModel):
    """UI-facing state of one file moving through the ingestion pipeline"""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "5f0c2f9e-1e0b-4c44-9d0c-2b7d1f3c9a10",
                "filename": "cells.pdf",
                "size": 1048576,
                "status": "uploading",
                "progress": 42.0,
                "subject": "Biology",
                "error_message": None,
                "error_code": None,
                "document_id": None
            }
        }
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Opaque, stable item identity")
    filename: str = Field(..., min_length=1)
    size: int = Field(0, ge=0)
    content_type: Optional[str] = None
    status: UploadStatus = Field(default=UploadStatus.PENDING)
    progress: float = Field(0.0, ge=0.0, le=100.0, description="Upload progress percentage")
    subject: Optional[str] = Field(None, description="Classified subject once known")
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    document_id: Optional[str] = Field(None, description="Metadata id of the created document")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None


class QueueEvent(BaseModel):
    """Change notification published for every item update"""
    model_config = ConfigDict(frozen=True)

    item_id: str
    status: UploadStatus
    progress: float
    item: UploadQueueItem
    removed: bool = False
