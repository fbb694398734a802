from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from typing import Literal

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ..adapters.base import AdapterFactory
from ..core.collector import ResponseCollector
from ..core.conversation_store import ConversationStore, new_conversation
from ..core.evaluator import evaluate, evaluate_single
from ..core.framing import NDJSON_MEDIA_TYPE, encode_event
from ..core.leaderboard import funny_index, performance_leaderboard
from ..core.logging_utils import configure_logging
from ..core.model_config import adapter_factory
from ..core.openrouter import fetch_free_models
from ..core.prompt import JOKE_CONVERSATION_PROMPT, joke_messages
from ..core.runtime_data import RuntimePaths, get_runtime_paths
from ..core.settings_store import SettingsStore
from ..core.types import EvaluationRequest, Message, Settings

load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(get_runtime_paths().logs_dir)
    yield


app = FastAPI(lifespan=lifespan)


class MessagePayload(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str


class ModelOverridePayload(BaseModel):
    system_prompt: str | None = None
    temperature: float | None = None
    thinking_enabled: bool | None = None
    thinking_budget: int | None = Field(None, ge=0)


class SettingsPayload(BaseModel):
    system_prompt: str | None = None
    temperature: float | None = None
    thinking_enabled: bool | None = None
    thinking_budget: int | None = Field(None, ge=0)
    joke_system_prompt: str | None = None
    selected_models: list[str] | None = None
    model_overrides: dict[str, ModelOverridePayload] | None = None


class EvaluateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str | None = Field(None, alias="modelId")
    model_ids: list[str] | None = Field(None, alias="modelIds")
    messages: list[MessagePayload] = Field(default_factory=list)
    settings: SettingsPayload | None = None
    joke_mode: bool = Field(False, alias="isJokeMode")


class RatingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(alias="modelId")
    rating: Literal["funny", "not_funny"]


def _merge_settings(stored: Settings, payload: SettingsPayload | None) -> Settings:
    if payload is None:
        return stored
    merged = stored.to_dict()
    merged.update(payload.model_dump(exclude_unset=True, exclude_none=True))
    return Settings.from_dict(merged)


def _prompt_text(messages: list[Message], joke_mode: bool) -> str:
    if joke_mode:
        return JOKE_CONVERSATION_PROMPT
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


async def _stream_and_record(
    request: EvaluationRequest,
    factory: AdapterFactory,
    conversation_id: str,
    runtime_paths: RuntimePaths,
) -> AsyncIterator[bytes]:
    collector = ResponseCollector(request.target_model_ids)
    if len(request.target_model_ids) == 1:
        events = evaluate_single(
            request.target_model_ids[0],
            request.messages,
            request.settings,
            joke_mode=request.joke_mode,
            factory=factory,
        )
    else:
        events = evaluate(request, factory)

    async with aclosing(events) as stream:
        async for event in stream:
            collector.apply(event)
            yield encode_event(event)

    if collector.is_complete:
        conversation = new_conversation(
            _prompt_text(list(request.messages), request.joke_mode),
            collector.responses,
            joke_mode=request.joke_mode,
            conversation_id=conversation_id,
        )
        ConversationStore(runtime_paths.conversations_path).append(conversation)
        logger.info("Saved conversation %s (%d models)", conversation_id, len(collector.responses))


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/models")
def list_models() -> dict:
    return {"models": fetch_free_models()}


@app.get("/api/settings")
def get_settings() -> dict:
    store = SettingsStore(get_runtime_paths().settings_path)
    return {"settings": store.load().to_dict()}


@app.put("/api/settings")
def put_settings(payload: SettingsPayload) -> dict:
    store = SettingsStore(get_runtime_paths().settings_path)
    settings = store.save(_merge_settings(store.load(), payload))
    return {"settings": settings.to_dict()}


@app.post("/api/evaluate")
async def evaluate_models(req: EvaluateRequest) -> StreamingResponse:
    model_ids = list(req.model_ids or [])
    if req.model_id:
        model_ids.insert(0, req.model_id)
    if not model_ids:
        raise HTTPException(status_code=400, detail="Provide modelId or modelIds")

    messages = [Message(role=m.role, content=m.content) for m in req.messages]
    if not messages and req.joke_mode:
        messages = joke_messages()
    if not messages:
        raise HTTPException(status_code=400, detail="Provide at least one message")

    runtime_paths = get_runtime_paths()
    settings = _merge_settings(SettingsStore(runtime_paths.settings_path).load(), req.settings)
    request = EvaluationRequest.build(messages, model_ids, settings, joke_mode=req.joke_mode)
    conversation_id = uuid.uuid4().hex

    return StreamingResponse(
        _stream_and_record(request, adapter_factory(), conversation_id, runtime_paths),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Conversation-Id": conversation_id},
    )


@app.get("/api/conversations")
def list_conversations() -> dict:
    store = ConversationStore(get_runtime_paths().conversations_path)
    return {"conversations": [c.to_dict() for c in store.list()]}


@app.post("/api/conversations/{conversation_id}/ratings")
def rate_response(conversation_id: str, req: RatingRequest) -> dict:
    store = ConversationStore(get_runtime_paths().conversations_path)
    try:
        conversation = store.set_rating(conversation_id, req.model_id, req.rating)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    return {"conversation": conversation.to_dict()}


@app.get("/api/leaderboard")
def leaderboard() -> dict:
    conversations = ConversationStore(get_runtime_paths().conversations_path).list()
    return {
        "funnyIndex": funny_index(conversations),
        "performance": performance_leaderboard(conversations),
    }
