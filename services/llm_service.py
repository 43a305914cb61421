"""
Completion service client for the Document Intelligence Engine

Talks to an OpenAI-compatible chat-completions endpoint (Groq by default)
and holds the prompt templates used by the answer, summary, classification
and quiz services.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple

import requests

from config import settings
from models.document import Chunk
from models.quiz import QuizOptions
from utils.exceptions import (
    LLMServiceError,
    ErrorCode,
    create_missing_credentials_error,
)
from utils.error_handlers import CircuitBreaker, RetryHandler, log_performance_metric

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """One role/content pair of a chat prompt"""
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class CompletionRequest:
    """Request sent to the completion service"""
    messages: List[ChatMessage]
    model: Optional[str] = None
    temperature: float = 0.2
    max_output_tokens: Optional[int] = None
    response_format: Optional[str] = None  # "json_object" for structured output
    timeout: Optional[float] = None
    cancel_event: Optional[threading.Event] = field(default=None, repr=False)


@dataclass
class CompletionResponse:
    """Response from the completion service"""
    text: str
    model_used: str
    tokens_used: int = 0
    processing_time_ms: int = 0


class TokenCounter:
    """Utility class for counting tokens"""

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """
        Estimate token count using a simple heuristic
        A tokenizer would be more accurate but this provides a reasonable approximation
        """
        # Conservative approximation: 1 token ≈ 3 characters
        return len(text) // 3

    @staticmethod
    def truncate_to_token_limit(text: str, max_tokens: int) -> str:
        """Truncate text to fit within token limit"""
        if TokenCounter.estimate_tokens(text) <= max_tokens:
            return text

        # Binary search to find the right length
        left, right = 0, len(text)
        while left < right:
            mid = (left + right + 1) // 2
            if TokenCounter.estimate_tokens(text[:mid]) <= max_tokens:
                left = mid
            else:
                right = mid - 1

        return text[:left]


class PromptTemplate:
    """Templates for generating prompts"""

    NO_ANSWER_TEXT = "I cannot find the answer in the provided context."

    ANSWER_SYSTEM_PROMPT = (
        "Answer the following question based only on the provided context. "
        "If the answer cannot be found in the context, say '" + NO_ANSWER_TEXT + "'"
    )

    ANSWER_TEMPLATE = """Context:
{context}

Question: {question}

Answer:"""

    SUMMARY_TEMPLATE = """Create a concise, clear summary of the following text while maintaining key information. Keep it short, 4-5 lines:

"{text}\""""

    # Characters of document text sent with a classification request
    CLASSIFICATION_TEXT_CHARS = 1500

    CLASSIFICATION_TEMPLATE = """Based on the text provided below, identify the most relevant subject from this list: {subjects}.
Text: {text}
Respond ONLY with the subject name from the list. If none seem relevant, respond with "{fallback}"."""

    QUIZ_SYSTEM_PROMPT = "You are a multiple-choice question generator. Create questions based on the provided text."

    QUIZ_TEMPLATE = """Create {count} multiple-choice questions based on the following text.
Make the questions suitable for {subject} students in a {tone} tone.

Text: "{text}"

Format your response as a JSON object with this exact structure, one entry per question keyed "1" to "{count}":
{{
  "1": {{
    "no": 1,
    "mcq": "Question text here?",
    "options": {{
      "A": "First option",
      "B": "Second option",
      "C": "Third option",
      "D": "Fourth option"
    }},
    "correct": "B",
    "explanation": "Detailed explanation of why this answer is correct"
  }}
}}"""

    @classmethod
    def format_context(cls, chunks: List[Chunk]) -> str:
        """Join passages with blank lines, in retrieval order"""
        return "\n\n".join(chunk.text for chunk in chunks)

    @classmethod
    def create_answer_messages(cls, question: str, context: str) -> List[ChatMessage]:
        return [
            ChatMessage("system", cls.ANSWER_SYSTEM_PROMPT),
            ChatMessage("user", cls.ANSWER_TEMPLATE.format(context=context, question=question)),
        ]

    @classmethod
    def create_summary_messages(cls, text: str) -> List[ChatMessage]:
        return [ChatMessage("user", cls.SUMMARY_TEMPLATE.format(text=text))]

    @classmethod
    def create_classification_messages(cls, text: str, subjects: List[str], fallback: str) -> List[ChatMessage]:
        prompt = cls.CLASSIFICATION_TEMPLATE.format(
            subjects=", ".join(subjects),
            text=text[:cls.CLASSIFICATION_TEXT_CHARS],
            fallback=fallback
        )
        return [ChatMessage("user", prompt)]

    @classmethod
    def create_quiz_messages(cls, text: str, options: QuizOptions) -> List[ChatMessage]:
        prompt = cls.QUIZ_TEMPLATE.format(
            count=options.count,
            subject=options.subject,
            tone=options.tone,
            text=text
        )
        return [
            ChatMessage("system", cls.QUIZ_SYSTEM_PROMPT),
            ChatMessage("user", prompt),
        ]


class CompletionClient:
    """Client for the chat-completions API with circuit breaker and retry logic"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None
    ):
        """
        Initialize the completion client

        Args:
            api_key: API key (if None, will use settings.llm_api_key)
            model: Primary model (if None, will use settings.llm_model)
            base_url: Chat-completions endpoint URL
            max_retries: Retries for timeouts and connection errors
        """
        self.api_key = api_key or settings.llm_api_key
        self.model = model or settings.llm_model
        self.fallback_model = settings.llm_fallback_model
        self.base_url = base_url or settings.llm_base_url
        self.timeout = settings.request_timeout_seconds
        self.max_output_tokens = settings.llm_max_output_tokens

        if not self.api_key:
            logger.warning("No completion API key provided, requests will fail until one is configured")

        # One breaker per client so independent clients do not trip each other
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.circuit_breaker_threshold,
            recovery_timeout=settings.circuit_breaker_recovery_seconds,
            expected_exception=LLMServiceError
        )
        retry_handler = RetryHandler(
            max_retries=settings.llm_max_retries if max_retries is None else max_retries,
            base_delay=settings.llm_retry_base_delay,
            retryable_exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError)
        )
        self._send = retry_handler(self._send_once)
        self._call_model = self.circuit_breaker(self._request_model)

    def is_available(self) -> bool:
        """Check if the completion service is configured"""
        return bool(self.api_key)

    def _build_payload(self, request: CompletionRequest, model: str) -> Dict:
        payload = {
            "model": model,
            "messages": [message.to_dict() for message in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_output_tokens or self.max_output_tokens,
        }
        if request.response_format:
            payload["response_format"] = {"type": request.response_format}
        return payload

    @staticmethod
    def _check_cancelled(request: CompletionRequest, model: str) -> None:
        if request.cancel_event is not None and request.cancel_event.is_set():
            raise LLMServiceError(
                message="Completion request was cancelled",
                model_name=model,
                error_code=ErrorCode.LLM_CANCELLED
            )

    def _send_once(self, request: CompletionRequest, payload: Dict) -> requests.Response:
        self._check_cancelled(request, payload["model"])
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        return requests.post(
            url=self.base_url,
            headers=headers,
            data=json.dumps(payload),
            timeout=request.timeout or self.timeout
        )

    def _request_model(self, request: CompletionRequest, model: str) -> Tuple[str, int]:
        """
        Make one API call for a model, mapping every failure to LLMServiceError

        Returns:
            Tuple of (response_text, tokens_used)
        """
        start_time = time.time()
        payload = self._build_payload(request, model)

        try:
            response = self._send(request, payload)
        except requests.exceptions.Timeout as e:
            logger.error(f"API timeout: {e}")
            raise LLMServiceError(
                message="Completion service request timed out. Please try again.",
                model_name=model,
                error_code=ErrorCode.LLM_TIMEOUT,
                original_exception=e
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Connection error: {e}")
            raise LLMServiceError(
                message="Failed to connect to completion service.",
                model_name=model,
                error_code=ErrorCode.LLM_SERVICE_UNAVAILABLE,
                original_exception=e
            ) from e

        duration_ms = int((time.time() - start_time) * 1000)
        log_performance_metric("llm_api_call", duration_ms, {"model": model, "status": response.status_code})

        if not 200 <= response.status_code < 300:
            self._raise_for_status(response, model)

        try:
            response_data = response.json()
            content = response_data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"Malformed completion response: {e}")
            raise LLMServiceError(
                message="Invalid response from completion service.",
                model_name=model,
                status_code=response.status_code,
                error_code=ErrorCode.LLM_INVALID_RESPONSE,
                original_exception=e
            ) from e

        if not isinstance(content, str) or not content.strip():
            raise LLMServiceError(
                message="Completion service returned no content.",
                model_name=model,
                status_code=response.status_code,
                error_code=ErrorCode.LLM_INVALID_RESPONSE
            )

        usage = response_data.get("usage") or {}
        return content.strip(), int(usage.get("total_tokens", 0) or 0)

    @staticmethod
    def _raise_for_status(response: requests.Response, model: str) -> None:
        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        error_message = f"HTTP {response.status_code}"
        if isinstance(error_data, dict) and isinstance(error_data.get("error"), dict):
            error_message = error_data["error"].get("message", error_message)

        if response.status_code == 429:
            logger.error(f"Rate limit exceeded: {error_message}")
            raise LLMServiceError(
                message="Rate limit exceeded for completion service. Please try again later.",
                model_name=model,
                status_code=429,
                error_code=ErrorCode.LLM_RATE_LIMIT
            )
        if response.status_code in (401, 403):
            logger.error(f"Authentication error: {error_message}")
            raise LLMServiceError(
                message="Completion service authentication failed. Please check the API key configuration.",
                model_name=model,
                status_code=response.status_code,
                error_code=ErrorCode.LLM_SERVICE_UNAVAILABLE
            )
        logger.error(f"Completion API error: {error_message}")
        raise LLMServiceError(
            message=f"Completion service API error: {error_message}",
            model_name=model,
            status_code=response.status_code,
            error_code=ErrorCode.LLM_API_ERROR
        )

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        """
        Run a completion, trying the primary model then the fallback model

        Args:
            request: Messages and generation parameters

        Returns:
            CompletionResponse with the generated text

        Raises:
            ConfigurationError: If no API key is configured
            LLMServiceError: If every model failed or the request was cancelled
            ServiceUnavailableError: If the circuit breaker is open
        """
        if not self.api_key:
            raise create_missing_credentials_error("completion")

        start_time = time.time()
        primary = request.model or self.model
        models_to_try = [primary]
        if self.fallback_model and self.fallback_model != primary:
            models_to_try.append(self.fallback_model)

        last_error = None
        for model in models_to_try:
            self._check_cancelled(request, model)
            try:
                logger.info(f"Requesting completion from model: {model}")
                text, tokens_used = self._call_model(request, model)
            except LLMServiceError as e:
                if e.error_code == ErrorCode.LLM_CANCELLED:
                    raise
                last_error = e
                logger.warning(f"Completion failed with {model}: {e}")
                continue

            processing_time = int((time.time() - start_time) * 1000)
            logger.info(f"Completion from {model} in {processing_time}ms")
            return CompletionResponse(
                text=text,
                model_used=model,
                tokens_used=tokens_used,
                processing_time_ms=processing_time
            )

        logger.error(f"All completion models failed. Last error: {last_error}")
        raise last_error

    def get_model_info(self) -> Dict[str, str]:
        """Get information about the configured models"""
        return {
            "primary_model": self.model,
            "fallback_model": self.fallback_model,
            "available": str(self.is_available())
        }
