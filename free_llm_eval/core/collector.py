from __future__ import annotations

import logging
from collections.abc import Iterable

from .types import ContentDelta, Done, Failed, ModelResponse, StreamEvent, ThinkingDelta

logger = logging.getLogger(__name__)


class ResponseCollector:
    """Demultiplexes an event stream into one ModelResponse per model.

    A response stops changing once its terminal event has been applied.
    """

    def __init__(self, model_ids: Iterable[str] = ()) -> None:
        self.responses: dict[str, ModelResponse] = {}
        self._finished: set[str] = set()
        for model_id in model_ids:
            self.responses[model_id] = ModelResponse(model_id=model_id)

    @property
    def pending(self) -> set[str]:
        return set(self.responses) - self._finished

    @property
    def is_complete(self) -> bool:
        return not self.pending

    def is_finished(self, model_id: str) -> bool:
        return model_id in self._finished

    def apply(self, event: StreamEvent) -> ModelResponse:
        response = self.responses.get(event.model_id)
        if response is None:
            response = self.responses[event.model_id] = ModelResponse(model_id=event.model_id)
        if self.is_finished(event.model_id):
            logger.warning("Ignoring %s for %s after its terminal event", type(event).__name__, event.model_id)
            return response

        if isinstance(event, ContentDelta):
            response.content += event.text
        elif isinstance(event, ThinkingDelta):
            response.thinking_content += event.text
        elif isinstance(event, Done):
            m = event.metrics
            response.duration = m.duration
            response.ttft = m.ttft
            response.thinking_duration = m.thinking_duration
            response.token_count = m.token_count
            response.thinking_token_count = m.thinking_token_count
            response.tps = m.tps
            self._finished.add(event.model_id)
        elif isinstance(event, Failed):
            response.error = event.message
            response.error_kind = event.error_kind.value
            self._finished.add(event.model_id)
        return response
