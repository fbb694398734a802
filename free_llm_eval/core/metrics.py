from __future__ import annotations

import math
import time
from typing import Callable

from .types import Metrics

# Rough characters-per-token ratio used when the provider reports no usage.
CHARS_PER_TOKEN = 3.5


def estimate_tokens(char_count: int) -> int:
    """Approximate token count from a character count. An estimate only."""
    if char_count <= 0:
        return 0
    return math.ceil(char_count / CHARS_PER_TOKEN)


def _ms(seconds: float) -> int:
    return max(0, int(round(seconds * 1000)))


def compute_tps(total_tokens: int, duration_ms: int) -> float:
    if duration_ms <= 0 or total_tokens <= 0:
        return 0.0
    return round(total_tokens / (duration_ms / 1000), 2)


class MetricsAccumulator:
    """Timing and size bookkeeping for one model within one evaluation.

    The clock returns seconds and defaults to ``time.perf_counter``. The
    accumulator starts timing on construction, so build it right before the
    request is dispatched.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self.started_at = clock()
        self.first_delta_at: float | None = None
        self.last_thinking_delta_at: float | None = None
        self.content_chars = 0
        self.thinking_chars = 0
        self.reported_tokens: int | None = None

    def record(self, content: str = "", thinking: str = "") -> None:
        if not content and not thinking:
            return
        now = self._clock()
        if self.first_delta_at is None:
            self.first_delta_at = now
        if thinking:
            self.last_thinking_delta_at = now
            self.thinking_chars += len(thinking)
        self.content_chars += len(content)

    def report_usage(self, completion_tokens: int) -> None:
        self.reported_tokens = completion_tokens

    def finish(self) -> Metrics:
        finished_at = self._clock()
        duration = _ms(finished_at - self.started_at)

        if self.first_delta_at is None:
            ttft = duration
        else:
            ttft = _ms(self.first_delta_at - self.started_at)

        if self.last_thinking_delta_at is None:
            thinking_duration = 0
        else:
            anchor = self.first_delta_at if self.first_delta_at is not None else self.started_at
            thinking_duration = _ms(self.last_thinking_delta_at - anchor)

        if self.reported_tokens is not None:
            token_count = self.reported_tokens
        else:
            token_count = estimate_tokens(self.content_chars)
        thinking_tokens = estimate_tokens(self.thinking_chars)

        return Metrics(
            duration=duration,
            ttft=ttft,
            token_count=token_count,
            thinking_duration=thinking_duration,
            thinking_token_count=thinking_tokens,
            tps=compute_tps(token_count + thinking_tokens, duration),
        )
