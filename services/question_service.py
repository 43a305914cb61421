"""
Grounded question answering for the Document Intelligence Engine
"""
import logging
import threading
import time
from typing import Optional

from config import settings
from models.question import Answer
from services.llm_service import CompletionClient, CompletionRequest, PromptTemplate, TokenCounter
from services.retrieval_service import RetrievalScope
from utils.exceptions import (
    DocIntelException, QuestionProcessingError, ValidationError,
    ErrorCode, create_scope_not_initialized_error
)
from utils.error_handlers import log_processing_step, log_performance_metric

logger = logging.getLogger(__name__)


class AnswerSynthesizer:
    """Answers questions from the passages of a retrieval scope"""

    def __init__(self, completion_client: CompletionClient, top_k: Optional[int] = None,
                 temperature: float = 0.2):
        """
        Initialize the answer synthesizer

        Args:
            completion_client: Client for the completion service
            top_k: Number of passages used as context
            temperature: Sampling temperature for answers
        """
        self.completion_client = completion_client
        self.top_k = top_k or settings.retrieval_top_k
        self.temperature = temperature
        self.max_context_tokens = settings.max_context_tokens

    def answer(
        self,
        question: str,
        scope: RetrievalScope,
        top_k: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None
    ) -> Answer:
        """
        Answer a question using only passages retrieved from the scope

        Args:
            question: The user's question
            scope: Initialized retrieval scope for the current page
            top_k: Override of the number of passages to retrieve
            cancel_event: Set to abandon the request before it is sent
            timeout: Per-call deadline in seconds

        Returns:
            Answer with the generated text and its source passages

        Raises:
            ValidationError: If the question is empty
            RetrievalError: If the scope has not been initialized
            LLMServiceError: If the completion service failed
        """
        if not question or not question.strip():
            raise ValidationError(
                message="Question cannot be empty",
                field_name="question",
                field_value=question,
                error_code=ErrorCode.INVALID_QUESTION
            )
        question = question.strip()
        start_time = time.time()

        try:
            with scope.lock:
                if not scope.is_ready:
                    raise create_scope_not_initialized_error()

                log_processing_step("passage_retrieval", {"top_k": top_k or self.top_k})
                passages = scope.query(question, top_k or self.top_k)

                if not passages:
                    logger.info("Scope holds no passages, returning canned answer")
                    return Answer(
                        question=question,
                        text=PromptTemplate.NO_ANSWER_TEXT,
                        source_passages=[],
                        model_used=None,
                        processing_time_ms=int((time.time() - start_time) * 1000)
                    )

                context = TokenCounter.truncate_to_token_limit(
                    PromptTemplate.format_context(passages), self.max_context_tokens
                )

                log_processing_step("answer_generation", {"passages": len(passages)})
                response = self.completion_client.complete(CompletionRequest(
                    messages=PromptTemplate.create_answer_messages(question, context),
                    temperature=self.temperature,
                    timeout=timeout,
                    cancel_event=cancel_event
                ))

        except DocIntelException:
            raise
        except Exception as e:
            logger.error(f"Failed to answer question: {e}")
            raise QuestionProcessingError(
                message=f"Failed to answer question: {e}",
                question=question,
                processing_stage="answer_synthesis",
                original_exception=e
            ) from e

        processing_time = int((time.time() - start_time) * 1000)
        log_performance_metric("question_answering", processing_time, {"model": response.model_used})

        return Answer(
            question=question,
            text=response.text,
            source_passages=passages,
            model_used=response.model_used,
            processing_time_ms=processing_time
        )
