"""
Question and Answer related data models for the Document Intelligence Engine
"""
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from models.document import Chunk


class Answer(BaseModel):
    """Grounded answer together with the passages it was drawn from"""
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "question": "Where does aerobic respiration happen?",
                "text": "Aerobic respiration happens in the mitochondria.",
                "source_passages": [
                    {"index": 0, "start_offset": 0, "text": "Mitochondria are the site of aerobic respiration..."}
                ],
                "model_used": "meta-llama/llama-4-scout-17b-16e-instruct",
                "processing_time_ms": 1250
            }
        }
    )

    question: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1, description="The generated answer text")
    source_passages: List[Chunk] = Field(default_factory=list, description="Passages used as grounding context")
    model_used: Optional[str] = Field(None, description="Model that produced the answer, None for canned answers")
    processing_time_ms: int = Field(0, ge=0)

    @field_validator('text')
    @classmethod
    def validate_answer_text(cls, v):
        """Validate answer text is meaningful"""
        stripped = v.strip()
        if not stripped:
            raise ValueError('Answer text cannot be empty or only whitespace')
        return stripped
