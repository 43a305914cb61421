"""
Multiple-choice quiz generation for the Document Intelligence Engine
"""
import json
import logging
import re
import threading
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from config import settings
from models.quiz import QuizOptions, QuizQuestion
from services.llm_service import CompletionClient, CompletionRequest, PromptTemplate
from utils.exceptions import QuizGenerationError, ValidationError
from utils.error_handlers import log_processing_step

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_quiz_payload(content: str, count: int) -> Dict[int, QuizQuestion]:
    """
    Parse and validate a structured quiz response.

    The payload must be a JSON object keyed by the ordinals "1".."count",
    each value a complete question. Any defect rejects the whole payload.

    Raises:
        QuizGenerationError: If the payload is not valid JSON, is missing an
            ordinal or carries a malformed question
    """
    text = content.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise QuizGenerationError(f"Quiz response is not valid JSON: {e}", original_exception=e) from e

    if not isinstance(payload, dict):
        raise QuizGenerationError("Quiz response must be a JSON object keyed by question number")

    # Some models wrap the questions in a single top-level key
    if "1" not in payload and len(payload) == 1:
        inner = next(iter(payload.values()))
        if isinstance(inner, dict):
            payload = inner

    questions: Dict[int, QuizQuestion] = {}
    for ordinal in range(1, count + 1):
        raw: Any = payload.get(str(ordinal))
        if not isinstance(raw, dict):
            raise QuizGenerationError(f"Question {ordinal} is missing from the quiz response", ordinal=ordinal)

        data = dict(raw)
        data.setdefault("no", ordinal)
        try:
            question = QuizQuestion.model_validate(data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field_name = ".".join(str(part) for part in first.get("loc", ())) or None
            raise QuizGenerationError(
                f"Question {ordinal} is malformed: {first.get('msg')}",
                ordinal=ordinal,
                field_name=field_name,
                original_exception=e
            ) from e

        if question.ordinal != ordinal:
            raise QuizGenerationError(
                f"Question keyed {ordinal} is numbered {question.ordinal}",
                ordinal=ordinal,
                field_name="no"
            )
        questions[ordinal] = question

    extra = set(payload) - {str(i) for i in range(1, count + 1)}
    if extra:
        logger.warning(f"Ignoring {len(extra)} unrequested entries in quiz response")

    return questions


class QuizGenerator:
    """Requests multiple-choice questions for a text passage"""

    def __init__(self, completion_client: CompletionClient, temperature: float = 0.4,
                 max_count: Optional[int] = None):
        self.completion_client = completion_client
        self.temperature = temperature
        self.max_count = max_count or settings.quiz_max_count

    def generate(
        self,
        text: str,
        options: Optional[QuizOptions] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None
    ) -> Dict[int, QuizQuestion]:
        """
        Generate a quiz for the given text

        Args:
            text: Source passage
            options: Question count, tone and audience subject
            cancel_event: Set to abandon the request before it is sent
            timeout: Per-call deadline in seconds

        Returns:
            Mapping of 1-based ordinal to QuizQuestion, one entry per requested question

        Raises:
            ValidationError: If the text is empty or the count is out of range
            QuizGenerationError: If the response is malformed
            LLMServiceError: If the completion service failed
        """
        options = options or QuizOptions(count=settings.quiz_default_count, tone=settings.quiz_default_tone)

        if not text or not text.strip():
            raise ValidationError("Quiz source text cannot be empty", field_name="text")
        if options.count > self.max_count:
            raise ValidationError(
                f"Cannot generate more than {self.max_count} questions",
                field_name="count",
                field_value=options.count,
                validation_rule=f"1 <= count <= {self.max_count}"
            )

        log_processing_step("quiz_generation", {"count": options.count, "tone": options.tone})
        response = self.completion_client.complete(CompletionRequest(
            messages=PromptTemplate.create_quiz_messages(text.strip(), options),
            temperature=self.temperature,
            response_format="json_object",
            timeout=timeout,
            cancel_event=cancel_event
        ))

        questions = parse_quiz_payload(response.text, options.count)
        logger.info(f"Generated {len(questions)} quiz questions with {response.model_used}")
        return questions
