"""
Document-related data models for the Document Intelligence Engine
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator


class Document(BaseModel):
    """Persisted record for an ingested (or externally linked) document"""
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "a1b2c3",
                "user_id": "user-42",
                "subject": "Biology",
                "storage_path": "documents/user-42/Biology/cells_1718000000000.pdf",
                "url": "file:///storage/documents/user-42/Biology/cells_1718000000000.pdf",
                "name": "cells_1718000000000.pdf",
                "original_name": "cells.pdf",
                "size": 1048576,
                "content_type": "application/pdf",
                "is_external": False,
                "uploaded_at": "2024-01-15T10:30:00Z"
            }
        }
    )

    id: Optional[str] = Field(None, description="Metadata store identifier, assigned on creation")
    user_id: str = Field(..., min_length=1, description="Owner of the document")
    subject: str = Field(..., min_length=1, description="Subject label the document is filed under")
    storage_path: Optional[str] = Field(None, description="Object storage locator; None for external links")
    url: str = Field(..., min_length=1, description="Download or external URL")
    name: str = Field(..., min_length=1, max_length=255, description="Unique stored name")
    original_name: str = Field(..., min_length=1, max_length=255, description="Name the file was uploaded with")
    size: Optional[int] = Field(None, ge=0, description="Size of the file in bytes")
    content_type: Optional[str] = Field(None, description="MIME type reported for the file")
    is_external: bool = Field(default=False, description="True when the document is only a link")
    source: Optional[str] = Field(None, description="Origin host for external documents")
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def validate_storage_path(self):
        """Uploaded documents must carry a storage locator"""
        if not self.is_external and not self.storage_path:
            raise ValueError("storage_path is required for uploaded documents")
        return self

    def to_record(self) -> Dict[str, Any]:
        """Serialize for the metadata store (the store assigns the id)"""
        return self.model_dump(mode="json", exclude={"id"})

    @classmethod
    def from_record(cls, record_id: str, record: Dict[str, Any]) -> "Document":
        return cls(id=record_id, **{k: v for k, v in record.items() if k != "id"})


class Chunk(BaseModel):
    """Ordered text span cut from one page's extracted text"""
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "index": 1,
                "start_offset": 800,
                "text": "Mitochondria are the site of aerobic respiration..."
            }
        }
    )

    index: int = Field(..., ge=0, description="Sequential index of this chunk within the source text")
    start_offset: int = Field(..., ge=0, description="Character offset of the chunk in the source text")
    text: str = Field(..., min_length=1, description="Text content of the chunk")

    @property
    def end_offset(self) -> int:
        return self.start_offset + len(self.text)
