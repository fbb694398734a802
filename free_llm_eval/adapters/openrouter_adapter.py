from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from typing import Any, Callable

import httpx

from ..core.errors import StreamParseError, TransportError, UpstreamError, classify_upstream_error
from ..core.framing import iter_lines
from ..core.metrics import MetricsAccumulator
from ..core.openrouter import OpenRouterConfig, get_openrouter_config, strip_prefix
from ..core.reasoning import extract_completion_tokens, normalize_delta, reasoning_request_fields
from ..core.types import ContentDelta, Done, EffectiveConfig, Failed, Message, StreamEvent, ThinkingDelta

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
MIN_THINKING_MAX_TOKENS = 4096
ANSWER_HEADROOM_TOKENS = 2048


def build_request_body(
    model: str, messages: Sequence[Message], config: EffectiveConfig
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": model,
        "messages": [{"role": "system", "content": config.system_prompt}]
        + [m.to_dict() for m in messages],
        "temperature": config.temperature,
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if config.thinking_enabled:
        payload.update(reasoning_request_fields(model, config.thinking_budget))
        # The ceiling covers reasoning and answer together; leave room for the
        # answer so a long think does not truncate it.
        payload["max_tokens"] = max(
            config.thinking_budget + ANSWER_HEADROOM_TOKENS, MIN_THINKING_MAX_TOKENS
        )
    return payload


def extract_error_message(response: httpx.Response) -> str:
    text = response.text
    try:
        payload = json.loads(text)
    except ValueError:
        return text.strip() or (response.reason_phrase or "unknown error")
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])
    return text.strip()


async def iter_sse_data(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield the payload of every ``data:`` line of a server-sent-event body."""
    async for line in iter_lines(chunks):
        if not line.startswith("data:"):
            # blank separators, ": keep-alive" comments, event:/id: fields
            continue
        payload = line[5:]
        if payload.startswith(" "):
            payload = payload[1:]
        yield payload


def parse_frame(data: str) -> dict[str, Any]:
    try:
        frame = json.loads(data)
    except json.JSONDecodeError as exc:
        raise StreamParseError(f"malformed frame ({exc}): {data[:200]!r}") from exc
    if not isinstance(frame, dict):
        raise StreamParseError(f"non-object frame: {data[:200]!r}")
    return frame


class OpenRouterStreamAdapter:
    """Streams one chat completion from an OpenAI-compatible endpoint."""

    def __init__(
        self,
        model_id: str,
        config: OpenRouterConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.id = model_id
        self.model = strip_prefix(model_id)
        self.config = config or get_openrouter_config()
        self._transport = transport
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "base_url": self.config.base_url,
            "timeout": self.config.timeout(),
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.config.proxy:
            kwargs["proxy"] = self.config.proxy
        return httpx.AsyncClient(**kwargs)

    async def stream(
        self, messages: Sequence[Message], config: EffectiveConfig
    ) -> AsyncIterator[StreamEvent]:
        payload = build_request_body(self.model, messages, config)
        metrics = MetricsAccumulator(clock=self._clock)
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", "/chat/completions", json=payload, headers=self.config.headers()
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        error = classify_upstream_error(
                            response.status_code, extract_error_message(response)
                        )
                        logger.warning("Model %s failed: %s", self.id, error.message)
                        yield Failed(self.id, error.kind, error.message)
                        return

                    async for data in iter_sse_data(response.aiter_bytes()):
                        if data == DONE_SENTINEL:
                            continue
                        try:
                            frame = parse_frame(data)
                        except StreamParseError as exc:
                            logger.warning("Skipping stream frame for %s: %s", self.id, exc.message)
                            continue

                        if "error" in frame:
                            error = self._frame_error(frame["error"])
                            logger.warning("Model %s reported a mid-stream error: %s", self.id, error.message)
                            yield Failed(self.id, error.kind, error.message)
                            return

                        tokens = extract_completion_tokens(frame)
                        if tokens is not None:
                            metrics.report_usage(tokens)

                        delta = normalize_delta(frame)
                        metrics.record(content=delta.content, thinking=delta.thinking)
                        if delta.thinking:
                            yield ThinkingDelta(self.id, delta.thinking)
                        if delta.content:
                            yield ContentDelta(self.id, delta.content)
        except httpx.TransportError as exc:
            error = TransportError(f"Network error talking to the model provider: {exc!r}")
            logger.warning("Model %s transport failure: %s", self.id, error.message)
            yield Failed(self.id, error.kind, error.message)
            return

        yield Done(self.id, metrics.finish())

    def _frame_error(self, error: Any) -> UpstreamError:
        if isinstance(error, dict):
            code = error.get("code")
            status = code if isinstance(code, int) else 502
            message = str(error.get("message") or error)
        else:
            status, message = 502, str(error)
        return classify_upstream_error(status, message)
