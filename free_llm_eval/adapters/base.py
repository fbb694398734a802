from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Callable, Protocol

from ..core.types import EffectiveConfig, Message, StreamEvent


class StreamAdapter(Protocol):
    id: str

    def stream(
        self, messages: Sequence[Message], config: EffectiveConfig
    ) -> AsyncIterator[StreamEvent]: ...


AdapterFactory = Callable[[str], StreamAdapter]
