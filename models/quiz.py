"""
Quiz-related data models for the Document Intelligence Engine
"""
import string
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator, ConfigDict

# Option keys are drawn from this closed alphabet
OPTION_LETTERS = string.ascii_uppercase


class QuizQuestion(BaseModel):
    """Multiple-choice question generated for a text passage"""
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "ordinal": 1,
                "prompt_text": "Which organelle produces most of the cell's ATP?",
                "options": {"A": "Ribosome", "B": "Mitochondrion", "C": "Golgi body", "D": "Nucleus"},
                "correct_letter": "B",
                "explanation": "Aerobic respiration takes place in the mitochondria."
            }
        }
    )

    ordinal: int = Field(..., ge=1, validation_alias=AliasChoices("ordinal", "no"))
    prompt_text: str = Field(..., min_length=1, validation_alias=AliasChoices("prompt_text", "mcq", "question"))
    options: Dict[str, str] = Field(..., description="Option letter to option text")
    correct_letter: str = Field(..., validation_alias=AliasChoices("correct_letter", "correct"))
    explanation: str = Field(..., min_length=1)

    @field_validator('prompt_text', 'explanation')
    @classmethod
    def validate_text(cls, v):
        stripped = v.strip()
        if not stripped:
            raise ValueError('Text cannot be empty or only whitespace')
        return stripped

    @field_validator('options')
    @classmethod
    def validate_options(cls, v):
        """Options must use letters from the option alphabet and carry text"""
        if len(v) < 2:
            raise ValueError('A question needs at least two options')
        normalized = {}
        for key, text in v.items():
            letter = str(key).strip().upper()
            if len(letter) != 1 or letter not in OPTION_LETTERS:
                raise ValueError(f'Invalid option key: {key!r}')
            if not str(text).strip():
                raise ValueError(f'Option {letter} has no text')
            normalized[letter] = str(text).strip()
        return dict(sorted(normalized.items()))

    @field_validator('correct_letter')
    @classmethod
    def validate_correct_letter(cls, v):
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_correct_option_exists(self):
        if self.correct_letter not in self.options:
            raise ValueError(f'Correct option {self.correct_letter!r} is not one of the options')
        return self


class QuestionResult(BaseModel):
    """Evaluation stored once a question has been answered"""
    model_config = ConfigDict(frozen=True)

    correct: bool
    correct_letter: str
    explanation: str


class QuizOptions(BaseModel):
    """Generation parameters for a quiz"""

    count: int = Field(3, ge=1, description="Number of questions to generate")
    tone: str = Field("formal", min_length=1)
    subject: str = Field("General", min_length=1)


class QuizAttempt(BaseModel):
    """Immutable snapshot of a submitted quiz"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    document_id: str
    document_name: Optional[str] = None
    page_number: int = Field(..., ge=1)
    questions: Dict[int, QuizQuestion]
    selections: Dict[int, str]
    results: Dict[int, QuestionResult]
    score: int = Field(..., ge=0)
    total_questions: int = Field(..., ge=1)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
