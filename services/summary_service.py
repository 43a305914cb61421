"""
Page summarisation and the per-page study session
"""
import logging
import threading
from typing import Dict, Optional

from models.question import Answer
from models.quiz import QuizOptions, QuizQuestion
from services.llm_service import CompletionClient, CompletionRequest, PromptTemplate
from services.question_service import AnswerSynthesizer
from services.quiz_generator import QuizGenerator
from services.quiz_grading import QuizGradingEngine
from services.retrieval_service import RetrievalService
from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


class Summarizer:
    """Produces short summaries of page text"""

    def __init__(self, completion_client: CompletionClient, temperature: float = 0.2):
        self.completion_client = completion_client
        self.temperature = temperature

    def summarize(self, text: str, cancel_event: Optional[threading.Event] = None,
                  timeout: Optional[float] = None) -> str:
        """
        Summarize text in a few lines

        Raises:
            ValidationError: If the text is empty
            LLMServiceError: If the completion service failed or returned nothing
        """
        if not text or not text.strip():
            raise ValidationError("Cannot summarize empty text", field_name="text")

        response = self.completion_client.complete(CompletionRequest(
            messages=PromptTemplate.create_summary_messages(text.strip()),
            temperature=self.temperature,
            timeout=timeout,
            cancel_event=cancel_event
        ))
        return response.text


class PageStudySession:
    """
    Study state for the page currently being viewed.

    Owns a RetrievalScope that is rebuilt on every ``open_page``; answers,
    summaries and quizzes all refer to the open page.
    """

    def __init__(
        self,
        retrieval_service: RetrievalService,
        answer_synthesizer: AnswerSynthesizer,
        summarizer: Summarizer,
        quiz_generator: QuizGenerator,
        user_id: str,
        document_id: str,
        document_name: Optional[str] = None,
        auto_summarize: bool = True
    ):
        self.retrieval_service = retrieval_service
        self.answer_synthesizer = answer_synthesizer
        self.summarizer = summarizer
        self.quiz_generator = quiz_generator
        self.user_id = user_id
        self.document_id = document_id
        self.document_name = document_name
        self.auto_summarize = auto_summarize

        self.scope = retrieval_service.create_scope()
        self.page_number: Optional[int] = None
        self.page_text: str = ""
        self.last_summary: Optional[str] = None
        self.quiz: Optional[QuizGradingEngine] = None

    def open_page(self, page_number: int, text: str) -> int:
        """
        Make a page the active one

        Returns:
            Number of chunks indexed for the page
        """
        if page_number < 1:
            raise ValidationError("Page numbers start at 1", field_name="page_number", field_value=page_number)

        chunk_count = self.scope.initialize(text)
        self.page_number = page_number
        self.page_text = self.scope.source_text or ""
        self.quiz = None
        logger.info(f"Opened page {page_number} of {self.document_id} ({chunk_count} chunks)")
        return chunk_count

    def _require_page(self) -> None:
        if self.page_number is None:
            raise ValidationError("No page is open", field_name="page_number")

    def ask(self, question: str, **kwargs) -> Answer:
        return self.answer_synthesizer.answer(question, self.scope, **kwargs)

    def summarize(self, **kwargs) -> Optional[str]:
        """
        Summary for the open page.

        With ``auto_summarize`` off the previous summary is returned without
        a request.
        """
        self._require_page()
        if not self.auto_summarize:
            return self.last_summary
        if not self.page_text:
            return None
        self.last_summary = self.summarizer.summarize(self.page_text, **kwargs)
        return self.last_summary

    def generate_quiz(self, options: Optional[QuizOptions] = None, **kwargs) -> QuizGradingEngine:
        """Generate questions for the open page and start grading them"""
        self._require_page()
        questions: Dict[int, QuizQuestion] = self.quiz_generator.generate(self.page_text, options, **kwargs)
        self.quiz = QuizGradingEngine(
            questions,
            user_id=self.user_id,
            document_id=self.document_id,
            page_number=self.page_number,
            document_name=self.document_name
        )
        return self.quiz

    def close(self) -> None:
        self.scope.reset()
        self.page_number = None
        self.page_text = ""
        self.quiz = None
