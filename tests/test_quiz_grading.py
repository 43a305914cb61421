"""
Tests for the quiz grading engine
"""
import threading

import pytest
from hypothesis import given, strategies as st

from models.quiz import QuizQuestion
from services.quiz_grading import QuestionState, QuizGradingEngine, QuizState
from utils.exceptions import ErrorCode, QuizStateError, ValidationError


def make_questions(count=5):
    return {
        ordinal: QuizQuestion(
            ordinal=ordinal,
            prompt_text=f"Question {ordinal}?",
            options={"A": "alpha", "B": "beta", "C": "gamma", "D": "delta"},
            correct_letter="A",
            explanation=f"Explanation {ordinal}"
        )
        for ordinal in range(1, count + 1)
    }


class TestQuizGradingEngine:
    """Test answer selection, grading and submission"""

    def setup_method(self):
        self.engine = QuizGradingEngine(make_questions(), user_id="user-1", document_id="doc-1",
                                        page_number=4, document_name="cells.pdf")

    def test_initial_state(self):
        assert self.engine.state == QuizState.IN_PROGRESS
        assert self.engine.total_questions == 5
        assert self.engine.answered_count == 0
        assert self.engine.score() == 0
        assert self.engine.question_state(1) == QuestionState.UNANSWERED
        assert not self.engine.is_explanation_visible(1)
        assert self.engine.attempt is None

    def test_select_correct_answer(self):
        result = self.engine.select_answer(1, "a")

        assert result.correct
        assert result.correct_letter == "A"
        assert result.explanation == "Explanation 1"
        assert self.engine.question_state(1) == QuestionState.ANSWERED
        assert self.engine.is_explanation_visible(1)

    def test_select_wrong_answer(self):
        result = self.engine.select_answer(2, "C")

        assert not result.correct
        assert result.correct_letter == "A"

    def test_answer_is_locked(self):
        first = self.engine.select_answer(1, "B")
        second = self.engine.select_answer(1, "A")

        assert second == first
        assert not second.correct
        assert self.engine.answered_count == 1

    def test_unknown_question(self):
        with pytest.raises(ValidationError) as exc_info:
            self.engine.select_answer(9, "A")

        assert exc_info.value.details["field_name"] == "ordinal"

    def test_unknown_option(self):
        with pytest.raises(ValidationError):
            self.engine.select_answer(1, "F")

        assert self.engine.question_state(1) == QuestionState.UNANSWERED

    def test_toggle_explanation(self):
        assert self.engine.toggle_explanation(3) is True
        assert self.engine.toggle_explanation(3) is False

        self.engine.select_answer(3, "A")
        assert self.engine.is_explanation_visible(3)
        assert self.engine.toggle_explanation(3) is False

    def test_partial_submission_scores_answered_only(self):
        self.engine.select_answer(1, "A")
        self.engine.select_answer(2, "A")
        self.engine.select_answer(3, "D")

        attempt = self.engine.submit()

        assert attempt.score == 2
        assert attempt.total_questions == 5
        assert attempt.selections == {1: "A", 2: "A", 3: "D"}
        assert sorted(attempt.results) == [1, 2, 3]
        assert attempt.page_number == 4
        assert attempt.document_name == "cells.pdf"
        assert self.engine.state == QuizState.SUBMITTED
        assert self.engine.attempt is attempt

    def test_submit_requires_an_answer(self):
        with pytest.raises(QuizStateError) as exc_info:
            self.engine.submit()

        assert exc_info.value.error_code == ErrorCode.QUIZ_STATE_ERROR
        assert self.engine.state == QuizState.IN_PROGRESS

    def test_submit_twice(self):
        self.engine.select_answer(1, "A")
        self.engine.submit()

        with pytest.raises(QuizStateError):
            self.engine.submit()

    def test_no_selection_after_submit(self):
        self.engine.select_answer(1, "A")
        self.engine.submit()

        with pytest.raises(QuizStateError):
            self.engine.select_answer(2, "A")

    def test_attempt_record_is_serializable(self):
        self.engine.select_answer(1, "A")
        record = self.engine.submit().to_record()

        assert record["score"] == 1
        assert record["questions"]["1"]["correct_letter"] == "A"

    def test_empty_quiz(self):
        with pytest.raises(ValidationError):
            QuizGradingEngine({}, user_id="u", document_id="d", page_number=1)

    def test_concurrent_selection_grades_once(self):
        results = []
        threads = [
            threading.Thread(target=lambda letter=letter: results.append(self.engine.select_answer(1, letter)))
            for letter in "ABCD" * 5
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({id(result) for result in results}) == 1
        assert self.engine.answered_count == 1

    @given(choices=st.dictionaries(st.integers(min_value=1, max_value=5), st.sampled_from("ABCD"), min_size=1))
    def test_score_counts_correct_answers(self, choices):
        engine = QuizGradingEngine(make_questions(), user_id="u", document_id="d", page_number=1)
        for ordinal, letter in choices.items():
            engine.select_answer(ordinal, letter)

        attempt = engine.submit()

        assert attempt.score == sum(1 for letter in choices.values() if letter == "A")
        assert 0 <= attempt.score <= len(choices) <= attempt.total_questions
