from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path

from .types import Conversation, ModelResponse, Rating

RATINGS: tuple[str, ...] = ("funny", "not_funny")


def new_conversation(
    prompt: str,
    responses: dict[str, ModelResponse],
    joke_mode: bool = False,
    conversation_id: str | None = None,
) -> Conversation:
    return Conversation(
        id=conversation_id or uuid.uuid4().hex,
        timestamp=datetime.now(timezone.utc).isoformat(),
        prompt=prompt,
        responses=responses,
        joke_mode=joke_mode,
    )


class ConversationStore:
    """Append-only JSON-lines file of finished evaluations."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, conversation: Conversation) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(conversation.to_dict(), ensure_ascii=False) + "\n")

    def list(self) -> list[Conversation]:
        if not self.path.exists():
            return []
        conversations = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if line.strip():
                    conversations.append(Conversation.from_dict(json.loads(line)))
        return conversations

    def get(self, conversation_id: str) -> Conversation | None:
        for conversation in self.list():
            if conversation.id == conversation_id:
                return conversation
        return None

    def set_rating(self, conversation_id: str, model_id: str, rating: Rating) -> Conversation:
        if rating not in RATINGS:
            raise ValueError(f"Unknown rating: {rating}")
        conversations = self.list()
        target = next((c for c in conversations if c.id == conversation_id), None)
        if target is None:
            raise KeyError(f"Conversation not found: {conversation_id}")
        response = target.responses.get(model_id)
        if response is None:
            raise KeyError(f"Model {model_id} has no response in {conversation_id}")
        response.rating = rating

        tmp_path = self.path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            for conversation in conversations:
                handle.write(json.dumps(conversation.to_dict(), ensure_ascii=False) + "\n")
        tmp_path.replace(self.path)
        return target
