"""
Error handling utilities for the Document Intelligence Engine

This module provides the resilience decorators used around external
service calls and helpers for consistent processing/performance logging.
"""
import functools
import logging
import threading
import time
from typing import Dict, Any, Optional

from utils.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Circuit breaker pattern implementation for external service calls
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception
    ):
        """
        Initialize circuit breaker

        Args:
            failure_threshold: Number of failures before opening circuit
            recovery_timeout: Seconds to wait before trying again
            expected_exception: Exception type that triggers circuit breaker
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time = None
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN
        self._lock = threading.Lock()

    def __call__(self, func):
        """Decorator implementation"""
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with self._lock:
                if self.state == "OPEN":
                    if self._should_attempt_reset():
                        self.state = "HALF_OPEN"
                    else:
                        raise ServiceUnavailableError(
                            message="Service temporarily unavailable (circuit breaker open)",
                            service_name=func.__name__,
                            retry_after=self.recovery_timeout
                        )

            try:
                result = func(*args, **kwargs)
            except self.expected_exception:
                self._on_failure()
                raise
            self._on_success()
            return result

        return wrapper

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset"""
        if self.last_failure_time is None:
            return True
        return time.time() - self.last_failure_time >= self.recovery_timeout

    def _on_success(self):
        """Handle successful call"""
        with self._lock:
            self.failure_count = 0
            self.state = "CLOSED"

    def _on_failure(self):
        """Handle failed call"""
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = time.time()

            if self.failure_count >= self.failure_threshold:
                self.state = "OPEN"


class RetryHandler:
    """
    Retry handler with exponential backoff
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        retryable_exceptions: tuple = (Exception,)
    ):
        """
        Initialize retry handler

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Initial delay between retries (seconds)
            max_delay: Maximum delay between retries (seconds)
            backoff_factor: Multiplier for exponential backoff
            retryable_exceptions: Tuple of exception types that should trigger retry
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.retryable_exceptions = retryable_exceptions

    def __call__(self, func):
        """Decorator implementation"""
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(self.max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except self.retryable_exceptions as e:
                    if attempt == self.max_retries:
                        logger.error(f"Function {func.__name__} failed after {self.max_retries} retries: {e}")
                        raise

                    delay = min(
                        self.base_delay * (self.backoff_factor ** attempt),
                        self.max_delay
                    )

                    logger.warning(f"Function {func.__name__} failed (attempt {attempt + 1}), retrying in {delay}s: {e}")
                    time.sleep(delay)

        return wrapper


# Utility functions for error handling

def log_processing_step(step_name: str, details: Optional[Dict[str, Any]] = None):
    """
    Log a processing step with optional details

    Args:
        step_name: Name of the processing step
        details: Optional dictionary with step details
    """
    log_message = f"Processing step: {step_name}"
    if details:
        log_message += f" - {details}"

    logger.info(log_message)


def log_performance_metric(operation: str, duration_ms: int, details: Optional[Dict[str, Any]] = None):
    """
    Log performance metrics for operations

    Args:
        operation: Name of the operation
        duration_ms: Duration in milliseconds
        details: Optional dictionary with additional details
    """
    log_message = f"Performance: {operation} completed in {duration_ms}ms"
    if details:
        log_message += f" - {details}"

    logger.info(log_message)


def handle_service_degradation(service_name: str, error: Exception) -> Dict[str, Any]:
    """
    Handle graceful service degradation

    Args:
        service_name: Name of the failing service
        error: The error that occurred

    Returns:
        Dictionary with degradation information
    """
    logger.warning(f"Service degradation detected for {service_name}: {error}")

    return {
        "service": service_name,
        "status": "degraded",
        "error": str(error),
        "fallback_available": True,
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    }
