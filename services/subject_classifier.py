"""
Subject classification for ingested documents
"""
import logging
from typing import List, Optional

import requests

from config import settings
from services.llm_service import CompletionClient, CompletionRequest, PromptTemplate
from utils.exceptions import ConfigurationError, LLMServiceError, ServiceUnavailableError
from utils.error_handlers import handle_service_degradation

logger = logging.getLogger(__name__)

_STRIP_CHARS = " \t\r\n\"'`.*"


def truncate_words(text: str, max_words: int) -> str:
    """Keep the first ``max_words`` whitespace-separated words"""
    return " ".join(text.split()[:max_words])


class SubjectClassifier:
    """
    Maps document text to one label of the caller's subject vocabulary.

    Classification never fails: any unusable response or unavailable service
    yields the fallback label.
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        fallback: Optional[str] = None,
        word_budget: Optional[int] = None,
        model: Optional[str] = None,
        timeout: float = 15.0
    ):
        self.completion_client = completion_client
        self.fallback = fallback or settings.default_subject
        self.word_budget = word_budget or settings.classification_word_budget
        self.model = model or settings.classification_model
        self.timeout = timeout

    def normalize_label(self, raw: Optional[str], known_subjects: List[str]) -> str:
        """
        Match a raw model response against the vocabulary.

        Surrounding quotes and punctuation are ignored and matching is
        case-insensitive; the canonical spelling from the vocabulary is
        returned. Anything else becomes the fallback.
        """
        if not raw:
            return self.fallback

        candidate = raw.strip(_STRIP_CHARS).casefold()
        for label in list(known_subjects) + [self.fallback]:
            if label.casefold() == candidate:
                return label

        logger.warning(f"Classification result {raw!r} is not in the subject list, using {self.fallback!r}")
        return self.fallback

    def classify(self, text: str, known_subjects: List[str]) -> str:
        """
        Classify text into one of the known subjects

        Args:
            text: Extracted document text
            known_subjects: The caller's current subject labels

        Returns:
            A member of known_subjects, or the fallback label
        """
        subjects = [s for s in known_subjects if s and s.strip()]
        if not text or not text.strip() or not subjects:
            return self.fallback

        limited_text = truncate_words(text, self.word_budget)
        request = CompletionRequest(
            messages=PromptTemplate.create_classification_messages(limited_text, subjects, self.fallback),
            model=self.model,
            temperature=0.1,
            timeout=self.timeout
        )

        try:
            response = self.completion_client.complete(request)
        except (ConfigurationError, LLMServiceError, ServiceUnavailableError,
                requests.exceptions.RequestException) as e:
            handle_service_degradation("subject_classifier", e)
            return self.fallback

        label = self.normalize_label(response.text, subjects)
        logger.info(f"Classified document as {label!r}")
        return label
