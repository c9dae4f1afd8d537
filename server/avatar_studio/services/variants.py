"""Concurrent fan-out over a style plan with settle-all semantics."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from ..models.generation import ModelInvocation, VariantResult
from .invoker import AttemptRecorder

logger = logging.getLogger(__name__)

VariantJob = Callable[[str, AttemptRecorder], Awaitable[str]]


async def generate_variants(style_plan: Sequence[str], invoke_fn: VariantJob) -> list[VariantResult]:
    """Run ``invoke_fn`` once per style concurrently and settle every result.

    ``invoke_fn(style, record)`` returns the durable reference for that style.
    A failing style becomes a ``FAILED`` result and never cancels its
    siblings. Results follow ``style_plan`` order, not completion order.
    """

    if not style_plan:
        return []

    attempt_logs: list[list[ModelInvocation]] = [[] for _ in style_plan]
    jobs = [invoke_fn(style, attempt_logs[index].append) for index, style in enumerate(style_plan)]
    settled = await asyncio.gather(*jobs, return_exceptions=True)

    results: list[VariantResult] = []
    for style, attempts, outcome in zip(style_plan, attempt_logs, settled):
        if isinstance(outcome, BaseException):
            logger.error("Failed to generate %s variant: %s", style, outcome)
            results.append(VariantResult.failed(style, outcome, tuple(attempts)))
        else:
            results.append(VariantResult.succeeded(style, outcome, tuple(attempts)))
    return results
