"""Newline-delimited JSON framing for evaluation events.

Both sides of the wire split byte streams into lines the same way, so the
splitting lives in one ``LineFramer`` that the SSE reader reuses too.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from .errors import ErrorKind
from .types import ContentDelta, Done, Failed, Metrics, StreamEvent, ThinkingDelta

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class LineFramer:
    """Accumulates byte chunks and hands back complete lines.

    The trailing partial line is kept until a later chunk completes it.
    Buffering bytes rather than text keeps multibyte characters that straddle
    chunk boundaries intact.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += chunk
        *complete, self._buffer = self._buffer.split(b"\n")
        return [self._decode(line) for line in complete]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        rest, self._buffer = self._buffer, b""
        if not rest:
            return []
        return [self._decode(rest)]

    @property
    def pending(self) -> bytes:
        return self._buffer

    @staticmethod
    def _decode(line: bytes) -> str:
        return line.decode("utf-8", errors="replace").rstrip("\r")


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    framer = LineFramer()
    async for chunk in chunks:
        for line in framer.feed(chunk):
            yield line
    for line in framer.flush():
        yield line


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    if isinstance(event, ContentDelta):
        return {"modelId": event.model_id, "content": event.text}
    if isinstance(event, ThinkingDelta):
        return {"modelId": event.model_id, "thinkingContent": event.text}
    if isinstance(event, Done):
        return {"modelId": event.model_id, "isDone": True, "metrics": event.metrics.to_dict()}
    if isinstance(event, Failed):
        return {
            "modelId": event.model_id,
            "isDone": True,
            "error": event.message,
            "errorKind": event.error_kind.value,
        }
    raise TypeError(f"Not a stream event: {event!r}")


def encode_event(event: StreamEvent) -> bytes:
    return (json.dumps(event_to_dict(event), ensure_ascii=False) + "\n").encode("utf-8")


def decode_event(data: Any) -> StreamEvent:
    if not isinstance(data, dict):
        raise ValueError("event is not an object")
    model_id = data.get("modelId")
    if not isinstance(model_id, str):
        raise ValueError("event is missing modelId")
    if data.get("isDone"):
        if "metrics" in data and data["metrics"] is not None:
            return Done(model_id=model_id, metrics=Metrics.from_dict(data["metrics"]))
        try:
            kind = ErrorKind(data.get("errorKind"))
        except ValueError:
            kind = ErrorKind.UPSTREAM_ERROR
        return Failed(model_id=model_id, error_kind=kind, message=str(data.get("error", "")))
    if "thinkingContent" in data:
        return ThinkingDelta(model_id=model_id, text=str(data["thinkingContent"]))
    if "content" in data:
        return ContentDelta(model_id=model_id, text=str(data["content"]))
    raise ValueError(f"unrecognised event: {data!r}")


async def frame_events(events: AsyncIterable[StreamEvent]) -> AsyncIterator[bytes]:
    async for event in events:
        yield encode_event(event)


async def iter_ndjson_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    async for line in iter_lines(chunks):
        if not line.strip():
            continue
        try:
            yield decode_event(json.loads(line))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Skipping malformed event line %r: %s", line[:200], exc)
