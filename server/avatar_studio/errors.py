"""
Avatar studio error taxonomy.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional


class ErrorClass(str, Enum):
    """Whether retrying the same provider call could plausibly succeed."""

    TERMINAL = "terminal"
    RETRYABLE = "retryable"


class PipelineError(Exception):
    """Base class for every failure raised by the generation pipeline."""


class ConfigurationError(PipelineError):
    """Style/model catalogue or credentials are unusable."""


class InvalidRequestError(PipelineError):
    """Request was rejected before any network call was made."""


class ProviderError(PipelineError):
    """An image-generation provider call failed."""

    classification: ErrorClass = ErrorClass.RETRYABLE

    def __init__(self, message: str, *, model_id: Optional[str] = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.model_id = model_id
        self.attempts = attempts


class TerminalProviderError(ProviderError):
    """Billing or quota failure; identical retries would fail the same way."""

    classification = ErrorClass.TERMINAL


class RetryableProviderError(ProviderError):
    """Timeouts, 5xx responses, empty output and anything unclassified."""

    classification = ErrorClass.RETRYABLE


class StorageError(PipelineError):
    """Object store read or write failed."""


class PersistError(StorageError):
    """Copying an asset into durable storage failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AggregateFailure(PipelineError):
    """Every requested variant failed."""

    def __init__(self, message: str, failures: Mapping[str, BaseException]) -> None:
        super().__init__(message)
        self.failures = dict(failures)

    @property
    def classification(self) -> ErrorClass:
        if self.failures and all(
            getattr(exc, "classification", None) is ErrorClass.TERMINAL for exc in self.failures.values()
        ):
            return ErrorClass.TERMINAL
        return ErrorClass.RETRYABLE


_TERMINAL_MARKERS = ("payment required", "spend limit", "insufficient credit")


def classify_provider_exception(exc: BaseException) -> ErrorClass:
    """Classify an arbitrary provider exception as terminal or retryable."""

    if isinstance(exc, ProviderError):
        return exc.classification
    if getattr(exc, "status", None) == 402 or getattr(exc, "status_code", None) == 402:
        return ErrorClass.TERMINAL
    text = str(exc).lower()
    if any(marker in text for marker in _TERMINAL_MARKERS):
        return ErrorClass.TERMINAL
    return ErrorClass.RETRYABLE
