from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence

from ..core.metrics import MetricsAccumulator
from ..core.types import ContentDelta, Done, EffectiveConfig, Message, StreamEvent, ThinkingDelta


class MockStreamAdapter:
    """Simple adapter that streams canned responses for testing."""

    def __init__(self, model: str = "mock", delay: float = 0.0) -> None:
        self.id = model
        self.delay = delay

    async def stream(
        self, messages: Sequence[Message], config: EffectiveConfig
    ) -> AsyncIterator[StreamEvent]:
        metrics = MetricsAccumulator()
        if config.thinking_enabled:
            for piece in ("Considering ", "the prompt."):
                await asyncio.sleep(self.delay)
                metrics.record(thinking=piece)
                yield ThinkingDelta(self.id, piece)
        for piece in ("Why did the mock cross the road? ", "To stub the other side."):
            await asyncio.sleep(self.delay)
            metrics.record(content=piece)
            yield ContentDelta(self.id, piece)
        yield Done(self.id, metrics.finish())
