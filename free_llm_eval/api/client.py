from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from typing import Any

import httpx

from ..core.collector import ResponseCollector
from ..core.framing import iter_ndjson_events
from ..core.types import Message, ModelResponse, StreamEvent


class EvaluatorClient:
    """Talks to a running evaluation server over its NDJSON stream."""

    def __init__(
        self,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout
        self.conversation_id: str | None = None

    def _client(self) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {"base_url": self.base_url, "timeout": self._timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def stream(
        self,
        model_ids: Sequence[str],
        messages: Sequence[Message],
        joke_mode: bool = False,
    ) -> AsyncIterator[StreamEvent]:
        body = {
            "modelIds": list(model_ids),
            "messages": [m.to_dict() for m in messages],
            "isJokeMode": joke_mode,
        }
        async with self._client() as client:
            async with client.stream("POST", "/api/evaluate", json=body) as response:
                if not response.is_success:
                    await response.aread()
                    response.raise_for_status()
                self.conversation_id = response.headers.get("X-Conversation-Id")
                async for event in iter_ndjson_events(response.aiter_bytes()):
                    yield event

    async def collect(
        self,
        model_ids: Sequence[str],
        messages: Sequence[Message],
        joke_mode: bool = False,
    ) -> dict[str, ModelResponse]:
        collector = ResponseCollector(model_ids)
        async with aclosing(self.stream(model_ids, messages, joke_mode)) as events:
            async for event in events:
                collector.apply(event)
        return collector.responses
