"""Bounded-retry wrapper around a single provider call."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_fixed

from ..errors import (
    ErrorClass,
    ProviderError,
    RetryableProviderError,
    TerminalProviderError,
    classify_provider_exception,
)
from ..models.generation import ModelInvocation, RetryableFailure, Success, TerminalFailure
from .catalog import ModelSpec
from .provider import ImageProvider

logger = logging.getLogger(__name__)

AttemptRecorder = Callable[[ModelInvocation], None]


class ModelInvoker:
    """Runs one provider call with a fixed-delay retry policy.

    Billing and quota failures are terminal and surface after the first
    attempt. Everything else, including an empty output list, consumes one
    attempt and is retried after ``retry_delay`` seconds until
    ``max_attempts`` is reached.
    """

    def __init__(
        self,
        provider: ImageProvider,
        *,
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._provider = provider
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def invoke(
        self,
        model: ModelSpec,
        prompt: str,
        input_refs: Sequence[str] = (),
        style: Optional[str] = None,
        *,
        negative_prompt: Optional[str] = None,
        on_attempt: Optional[AttemptRecorder] = None,
    ) -> str:
        """Return the first output reference, or raise a ``ProviderError``."""

        image_url = input_refs[0] if input_refs else None
        payload = model.build_input(prompt, image_url=image_url, style=style, negative_prompt=negative_prompt)
        refs = tuple(input_refs)

        retryer = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                number = attempt.retry_state.attempt_number
                logger.info(
                    "Generating image (attempt %s/%s) with %s style=%s",
                    number,
                    self._max_attempts,
                    model.model_id,
                    style,
                )
                try:
                    outputs = await self._provider.run(model.model_id, payload)
                    if not outputs:
                        raise RetryableProviderError("Model returned no output", model_id=model.model_id)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    classification = classify_provider_exception(exc)
                    reason = str(exc) or type(exc).__name__
                    if classification is ErrorClass.TERMINAL:
                        _record(on_attempt, model, prompt, refs, number, TerminalFailure(reason))
                        logger.error("Terminal provider error from %s, not retrying: %s", model.model_id, reason)
                    else:
                        _record(on_attempt, model, prompt, refs, number, RetryableFailure(reason))
                        if number >= self._max_attempts:
                            logger.error("Giving up on %s after %s attempts: %s", model.model_id, number, reason)
                    raise _as_provider_error(exc, classification, model.model_id, number) from exc

                _record(on_attempt, model, prompt, refs, number, Success(outputs[0]))
                return outputs[0]

        raise AssertionError("unreachable")  # pragma: no cover


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.classification is ErrorClass.RETRYABLE


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning("Attempt %s failed: %s", retry_state.attempt_number, exc)
    logger.info("Retrying in %s seconds...", delay)


def _as_provider_error(
    exc: Exception, classification: ErrorClass, model_id: str, attempt: int
) -> ProviderError:
    message = str(exc) or type(exc).__name__
    cls = TerminalProviderError if classification is ErrorClass.TERMINAL else RetryableProviderError
    return cls(message, model_id=model_id, attempts=attempt)


def _record(
    on_attempt: Optional[AttemptRecorder],
    model: ModelSpec,
    prompt: str,
    refs: tuple[str, ...],
    attempt: int,
    outcome,
) -> None:
    if on_attempt is None:
        return
    on_attempt(
        ModelInvocation(
            model_id=model.model_id,
            prompt_text=prompt,
            input_refs=refs,
            attempt_number=attempt,
            outcome=outcome,
        )
    )
