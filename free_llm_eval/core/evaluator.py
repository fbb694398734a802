"""Concurrent fan-out of one prompt to many models.

Every selected model runs in its own task. Events from all tasks are
multiplexed through a single queue in the order they become available, and
each model is guaranteed exactly one terminal event no matter how its
adapter behaves.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import aclosing
from dataclasses import replace

import httpx

from ..adapters.base import AdapterFactory
from .collector import ResponseCollector
from .config_resolver import resolve
from .errors import ErrorKind, EvaluationError
from .model_config import adapter_factory
from .types import EvaluationRequest, Failed, Message, ModelResponse, Settings, StreamEvent

logger = logging.getLogger(__name__)


def _extract_actual_error(exception: BaseException) -> str:
    """Extract the actual error message from RetryError and other exception wrappers."""
    if hasattr(exception, "last_attempt") and exception.last_attempt:
        if exception.last_attempt.exception():
            return str(exception.last_attempt.exception())
    if exception.__cause__:
        return str(exception.__cause__)
    return str(exception) or type(exception).__name__


def _failure_for(model_id: str, exc: Exception) -> Failed:
    if isinstance(exc, EvaluationError):
        return Failed(model_id, exc.kind, exc.message)
    if isinstance(exc, httpx.TransportError):
        return Failed(model_id, ErrorKind.TRANSPORT_ERROR, f"Network error: {_extract_actual_error(exc)}")
    return Failed(
        model_id,
        ErrorKind.UPSTREAM_ERROR,
        f"{type(exc).__name__}: {_extract_actual_error(exc)}",
    )


async def _model_events(
    model_id: str, request: EvaluationRequest, factory: AdapterFactory
) -> AsyncIterator[StreamEvent]:
    terminal_seen = False
    try:
        config = resolve(model_id, request.settings, request.joke_mode)
        adapter = factory(model_id)
        async with aclosing(adapter.stream(request.messages, config)) as events:
            async for event in events:
                if event.model_id != model_id:
                    event = replace(event, model_id=model_id)
                terminal_seen = event.is_terminal
                yield event
                if terminal_seen:
                    return
    except Exception as exc:
        if terminal_seen:
            logger.warning("Ignoring error from %s after its terminal event: %s", model_id, exc)
            return
        logger.exception("Evaluation of %s failed", model_id)
        yield _failure_for(model_id, exc)
        return

    if not terminal_seen:
        logger.warning("Stream for %s ended without a terminal event", model_id)
        yield Failed(model_id, ErrorKind.UPSTREAM_ERROR, "Stream ended without a completion signal")


async def _pump(
    model_id: str,
    request: EvaluationRequest,
    factory: AdapterFactory,
    queue: asyncio.Queue,
) -> None:
    async for event in _model_events(model_id, request, factory):
        await queue.put(event)


async def evaluate(
    request: EvaluationRequest, factory: AdapterFactory | None = None
) -> AsyncIterator[StreamEvent]:
    """Yield events from every target model as they arrive.

    The iterator ends once each model has produced its terminal event.
    Closing it early cancels the remaining model tasks, which also closes
    their upstream connections.
    """
    factory = factory or adapter_factory()
    queue: asyncio.Queue = asyncio.Queue()
    tasks = [
        asyncio.create_task(_pump(model_id, request, factory, queue), name=f"evaluate:{model_id}")
        for model_id in request.target_model_ids
    ]
    remaining = len(tasks)
    try:
        while remaining:
            event = await queue.get()
            if event.is_terminal:
                remaining -= 1
            yield event
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def evaluate_single(
    model_id: str,
    messages: Sequence[Message],
    settings: Settings,
    joke_mode: bool = False,
    factory: AdapterFactory | None = None,
) -> AsyncIterator[StreamEvent]:
    """Re-run one model without any fan-out."""
    request = EvaluationRequest.build(list(messages), [model_id], settings, joke_mode)
    async with aclosing(_model_events(model_id, request, factory or adapter_factory())) as events:
        async for event in events:
            yield event


async def collect(
    request: EvaluationRequest, factory: AdapterFactory | None = None
) -> dict[str, ModelResponse]:
    """Run a full evaluation and return the finished responses."""
    collector = ResponseCollector(request.target_model_ids)
    async with aclosing(evaluate(request, factory)) as events:
        async for event in events:
            collector.apply(event)
    return collector.responses


def pick_replacement_model(
    failed_model_id: str, candidates: Iterable[str], in_use: Iterable[str] = ()
) -> str | None:
    """Choose another model to retry a prompt with after a rate-limit failure."""
    taken = set(in_use) | {failed_model_id}
    for candidate in candidates:
        if candidate not in taken:
            return candidate
    return None
