from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Literal

from .errors import ErrorKind

Role = Literal["user", "assistant", "system"]
Rating = Literal["funny", "not_funny"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ModelOverride:
    system_prompt: str | None = None
    temperature: float | None = None
    thinking_enabled: bool | None = None
    thinking_budget: int | None = None

    @classmethod
    def from_dict(cls, model_id: str, data: dict[str, Any]) -> "ModelOverride":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown override keys for %s: %s", model_id, ", ".join(map(str, unknown)))
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class Settings:
    system_prompt: str = "You are a helpful assistant."
    temperature: float = 0.7
    thinking_enabled: bool = False
    thinking_budget: int = 1024
    joke_system_prompt: str | None = None
    selected_models: tuple[str, ...] = ()
    model_overrides: dict[str, ModelOverride] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        overrides = {}
        raw_overrides = data.get("model_overrides") or {}
        if not isinstance(raw_overrides, dict):
            logger.warning("Ignoring model_overrides: expected a mapping, got %s", type(raw_overrides).__name__)
            raw_overrides = {}
        for model_id, values in raw_overrides.items():
            if values is None:
                values = {}
            if not isinstance(values, dict):
                logger.warning("Ignoring override for %s: expected a mapping", model_id)
                continue
            overrides[model_id] = ModelOverride.from_dict(model_id, values)
        base = cls()
        return cls(
            system_prompt=data.get("system_prompt", base.system_prompt),
            temperature=float(data.get("temperature", base.temperature)),
            thinking_enabled=bool(data.get("thinking_enabled", base.thinking_enabled)),
            thinking_budget=int(data.get("thinking_budget", base.thinking_budget)),
            joke_system_prompt=data.get("joke_system_prompt"),
            selected_models=tuple(data.get("selected_models") or ()),
            model_overrides=overrides,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_prompt": self.system_prompt,
            "temperature": self.temperature,
            "thinking_enabled": self.thinking_enabled,
            "thinking_budget": self.thinking_budget,
            "joke_system_prompt": self.joke_system_prompt,
            "selected_models": list(self.selected_models),
            "model_overrides": {
                model_id: {k: v for k, v in override.__dict__.items() if v is not None}
                for model_id, override in self.model_overrides.items()
            },
        }


@dataclass(frozen=True)
class EffectiveConfig:
    system_prompt: str
    temperature: float
    thinking_enabled: bool
    thinking_budget: int


@dataclass(frozen=True)
class EvaluationRequest:
    messages: tuple[Message, ...]
    target_model_ids: tuple[str, ...]
    settings: Settings
    joke_mode: bool = False

    @classmethod
    def build(
        cls,
        messages: list[Message],
        model_ids: list[str],
        settings: Settings,
        joke_mode: bool = False,
    ) -> "EvaluationRequest":
        # dict.fromkeys keeps first-seen order while dropping duplicates
        return cls(
            messages=tuple(messages),
            target_model_ids=tuple(dict.fromkeys(model_ids)),
            settings=settings,
            joke_mode=joke_mode,
        )


@dataclass(frozen=True)
class Metrics:
    duration: int
    ttft: int
    token_count: int
    thinking_duration: int
    thinking_token_count: int
    tps: float

    def to_dict(self) -> dict[str, int | float]:
        return {
            "duration": self.duration,
            "ttft": self.ttft,
            "tokenCount": self.token_count,
            "thinkingDuration": self.thinking_duration,
            "thinkingTokenCount": self.thinking_token_count,
            "tps": self.tps,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Metrics":
        return cls(
            duration=int(data.get("duration", 0)),
            ttft=int(data.get("ttft", 0)),
            token_count=int(data.get("tokenCount", 0)),
            thinking_duration=int(data.get("thinkingDuration", 0)),
            thinking_token_count=int(data.get("thinkingTokenCount", 0)),
            tps=float(data.get("tps", 0.0)),
        )


@dataclass(frozen=True)
class ContentDelta:
    model_id: str
    text: str
    is_terminal = False


@dataclass(frozen=True)
class ThinkingDelta:
    model_id: str
    text: str
    is_terminal = False


@dataclass(frozen=True)
class Done:
    model_id: str
    metrics: Metrics
    is_terminal = True


@dataclass(frozen=True)
class Failed:
    model_id: str
    error_kind: ErrorKind
    message: str
    is_terminal = True


StreamEvent = ContentDelta | ThinkingDelta | Done | Failed


@dataclass
class ModelResponse:
    model_id: str
    content: str = ""
    thinking_content: str = ""
    duration: int = 0
    ttft: int | None = None
    thinking_duration: int = 0
    token_count: int = 0
    thinking_token_count: int = 0
    tps: float = 0.0
    error: str | None = None
    error_kind: str | None = None
    rating: Rating | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "modelId": self.model_id,
            "content": self.content,
            "thinkingContent": self.thinking_content,
            "duration": self.duration,
            "ttft": self.ttft,
            "thinkingDuration": self.thinking_duration,
            "tokenCount": self.token_count,
            "thinkingTokenCount": self.thinking_token_count,
            "tps": self.tps,
        }
        if self.error is not None:
            data["error"] = self.error
            data["errorKind"] = self.error_kind
        if self.rating is not None:
            data["rating"] = self.rating
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelResponse":
        return cls(
            model_id=data["modelId"],
            content=data.get("content", ""),
            thinking_content=data.get("thinkingContent", ""),
            duration=data.get("duration", 0),
            ttft=data.get("ttft"),
            thinking_duration=data.get("thinkingDuration", 0),
            token_count=data.get("tokenCount", 0),
            thinking_token_count=data.get("thinkingTokenCount", 0),
            tps=data.get("tps", 0.0),
            error=data.get("error"),
            error_kind=data.get("errorKind"),
            rating=data.get("rating"),
        )


@dataclass
class Conversation:
    id: str
    timestamp: str
    prompt: str
    responses: dict[str, ModelResponse]
    joke_mode: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "prompt": self.prompt,
            "jokeMode": self.joke_mode,
            "responses": {k: v.to_dict() for k, v in self.responses.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            prompt=data.get("prompt", ""),
            joke_mode=bool(data.get("jokeMode", False)),
            responses={
                k: ModelResponse.from_dict(v) for k, v in (data.get("responses") or {}).items()
            },
        )
