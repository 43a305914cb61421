"""
Quiz grading state machine for the Document Intelligence Engine
"""
import logging
import threading
from enum import Enum
from typing import Dict, Optional

from models.quiz import QuizAttempt, QuizQuestion, QuestionResult
from utils.exceptions import QuizStateError, ValidationError

logger = logging.getLogger(__name__)


class QuestionState(str, Enum):
    UNANSWERED = "unanswered"
    ANSWERED = "answered"


class QuizState(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class QuizGradingEngine:
    """
    Tracks answers for one generated quiz and produces its QuizAttempt.

    Answers are locked once evaluated: selecting again for an answered
    question returns the stored result unchanged.
    """

    def __init__(
        self,
        questions: Dict[int, QuizQuestion],
        user_id: str,
        document_id: str,
        page_number: int,
        document_name: Optional[str] = None
    ):
        if not questions:
            raise ValidationError("A quiz needs at least one question", field_name="questions")

        self.questions = dict(sorted(questions.items()))
        self.user_id = user_id
        self.document_id = document_id
        self.page_number = page_number
        self.document_name = document_name

        self.state = QuizState.IN_PROGRESS
        self._selections: Dict[int, str] = {}
        self._results: Dict[int, QuestionResult] = {}
        self._explanations_visible: Dict[int, bool] = {ordinal: False for ordinal in self.questions}
        self._attempt: Optional[QuizAttempt] = None
        self._lock = threading.Lock()

    def _question(self, ordinal: int) -> QuizQuestion:
        question = self.questions.get(ordinal)
        if question is None:
            raise ValidationError(
                f"Quiz has no question {ordinal}",
                field_name="ordinal",
                field_value=ordinal
            )
        return question

    def question_state(self, ordinal: int) -> QuestionState:
        self._question(ordinal)
        with self._lock:
            return QuestionState.ANSWERED if ordinal in self._results else QuestionState.UNANSWERED

    def select_answer(self, ordinal: int, letter: str) -> QuestionResult:
        """
        Record and grade an answer

        Args:
            ordinal: 1-based question number
            letter: Chosen option letter (case-insensitive)

        Returns:
            The stored result for the question

        Raises:
            ValidationError: If the question or option does not exist
            QuizStateError: If the quiz was already submitted
        """
        question = self._question(ordinal)
        letter = (letter or "").strip().upper()

        with self._lock:
            if self.state == QuizState.SUBMITTED:
                raise QuizStateError("Quiz has already been submitted", state=self.state.value)

            existing = self._results.get(ordinal)
            if existing is not None:
                logger.debug(f"Question {ordinal} already answered, ignoring selection {letter!r}")
                return existing

            if letter not in question.options:
                raise ValidationError(
                    f"Question {ordinal} has no option {letter!r}",
                    field_name="letter",
                    field_value=letter,
                    validation_rule=f"one of {sorted(question.options)}"
                )

            result = QuestionResult(
                correct=letter == question.correct_letter,
                correct_letter=question.correct_letter,
                explanation=question.explanation
            )
            self._selections[ordinal] = letter
            self._results[ordinal] = result
            # The explanation is revealed as soon as an answer is graded
            self._explanations_visible[ordinal] = True
            return result

    def toggle_explanation(self, ordinal: int) -> bool:
        """Flip explanation visibility and return the new value"""
        self._question(ordinal)
        with self._lock:
            self._explanations_visible[ordinal] = not self._explanations_visible[ordinal]
            return self._explanations_visible[ordinal]

    def is_explanation_visible(self, ordinal: int) -> bool:
        self._question(ordinal)
        with self._lock:
            return self._explanations_visible[ordinal]

    def result(self, ordinal: int) -> Optional[QuestionResult]:
        self._question(ordinal)
        with self._lock:
            return self._results.get(ordinal)

    @property
    def answered_count(self) -> int:
        with self._lock:
            return len(self._results)

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    def score(self) -> int:
        """Number of answered questions graded correct"""
        with self._lock:
            return sum(1 for result in self._results.values() if result.correct)

    def submit(self) -> QuizAttempt:
        """
        Finalize the quiz

        Returns:
            Immutable QuizAttempt snapshot

        Raises:
            QuizStateError: If nothing was answered or the quiz was already submitted
        """
        with self._lock:
            if self.state == QuizState.SUBMITTED:
                raise QuizStateError("Quiz has already been submitted", state=self.state.value)
            if not self._results:
                raise QuizStateError("Answer at least one question before submitting", state=self.state.value)

            self._attempt = QuizAttempt(
                user_id=self.user_id,
                document_id=self.document_id,
                document_name=self.document_name,
                page_number=self.page_number,
                questions=self.questions,
                selections=dict(self._selections),
                results=dict(self._results),
                score=sum(1 for result in self._results.values() if result.correct),
                total_questions=len(self.questions)
            )
            self.state = QuizState.SUBMITTED

        logger.info(f"Quiz submitted: {self._attempt.score}/{self._attempt.total_questions}")
        return self._attempt

    @property
    def attempt(self) -> Optional[QuizAttempt]:
        return self._attempt
