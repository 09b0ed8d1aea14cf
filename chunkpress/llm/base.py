import logging
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base class for completion-service failures."""

    retryable = True


class RequestError(LLMError):
    """Transport failure or non-success HTTP status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        # Bad credentials will not get better by retrying
        self.retryable = status_code not in (401, 403)


class JsonError(LLMError):
    """The response body was not JSON or had no completion content."""


class ApiError(LLMError):
    """The service answered with an explicit error object."""


class LLMClient(ABC):
    """Completion-service collaborator: prompt in, response string out."""

    def __init__(self, max_retries: int = 3, retry_delay: float = 1.0):
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    # ── Public entry point ──

    def generate_response(self, system_prompt: str, prompt: str) -> str:
        """Generate a response, retrying failed attempts.

        Makes up to ``1 + max_retries`` attempts with a fixed
        ``retry_delay`` between them, then raises the last
        :class:`LLMError`.
        """
        attempts = self.max_retries + 1
        last_error: LLMError | None = None

        for attempt in range(1, attempts + 1):
            try:
                result = self._generate(system_prompt, prompt)
                if not result or not result.strip():
                    raise JsonError("Completion service returned an empty response")
                return result
            except LLMError as e:
                last_error = e
                logger.warning("[LLM] Error on attempt %d/%d: %s",
                               attempt, attempts, e)
                if not e.retryable:
                    break
                if attempt < attempts:
                    time.sleep(self.retry_delay)

        if last_error is None:
            raise LLMError("No attempts were made (max_retries < 0)")
        raise last_error

    # ── Subclass hook ──

    @abstractmethod
    def _generate(self, system_prompt: str, prompt: str) -> str:
        """Single request. Must raise :class:`LLMError` subclasses only."""
