import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
import json

import httpx

from free_llm_eval.adapters.mock_adapter import MockStreamAdapter
from free_llm_eval.adapters.openrouter_adapter import OpenRouterStreamAdapter
from free_llm_eval.core.errors import ErrorKind, RateLimitError
from free_llm_eval.core.evaluator import collect, evaluate, evaluate_single, pick_replacement_model
from free_llm_eval.core.metrics import MetricsAccumulator
from free_llm_eval.core.openrouter import OpenRouterConfig
from free_llm_eval.core.types import (
    ContentDelta,
    Done,
    EvaluationRequest,
    Failed,
    Message,
    Settings,
    ThinkingDelta,
)

TEST_CONFIG = OpenRouterConfig(
    base_url="https://openrouter.test/api/v1",
    api_key="test-key",
    read_timeout=5.0,
    connect_timeout=5.0,
    referer="http://localhost:3000",
    title="Free LLM Evaluator",
)
MESSAGES = [Message(role="user", content="Hello?")]


class ExplodingAdapter:
    def __init__(self, model_id, after=1):
        self.id = model_id
        self.after = after

    async def stream(self, messages, config):
        for i in range(self.after):
            yield ContentDelta(self.id, f"chunk{i}")
        raise RuntimeError("socket on fire")


class ChattyAdapter:
    """Keeps talking after its terminal event."""

    def __init__(self, model_id):
        self.id = model_id

    async def stream(self, messages, config):
        yield ContentDelta(self.id, "hi")
        yield Done(self.id, MetricsAccumulator().finish())
        yield ContentDelta(self.id, "extra")
        yield Done(self.id, MetricsAccumulator().finish())


class SilentAdapter:
    def __init__(self, model_id):
        self.id = model_id

    async def stream(self, messages, config):
        yield ContentDelta(self.id, "partial")


class RaisingTypedAdapter:
    def __init__(self, model_id):
        self.id = model_id

    async def stream(self, messages, config):
        raise RateLimitError(429, "too many requests")
        yield  # pragma: no cover


def factory_from(mapping):
    return lambda model_id: mapping[model_id](model_id)


def run_events(request, factory):
    async def _run():
        return [event async for event in evaluate(request, factory)]

    return asyncio.run(_run())


def terminal_events(events):
    return [e for e in events if e.is_terminal]


def test_one_terminal_per_model():
    ids = [f"mock/m{i}" for i in range(7)]
    request = EvaluationRequest.build(MESSAGES, ids, Settings(thinking_enabled=True))
    events = run_events(request, lambda model_id: MockStreamAdapter(model_id, delay=0.001))

    terminals = terminal_events(events)
    assert sorted(e.model_id for e in terminals) == sorted(ids)
    assert all(isinstance(e, Done) for e in terminals)
    assert any(isinstance(e, ThinkingDelta) for e in events)


def test_duplicate_model_ids_are_evaluated_once():
    request = EvaluationRequest.build(MESSAGES, ["mock/a", "mock/a", "mock/b"], Settings())
    assert request.target_model_ids == ("mock/a", "mock/b")
    events = run_events(request, MockStreamAdapter)
    assert len(terminal_events(events)) == 2


def test_no_delta_after_terminal_and_per_model_order():
    request = EvaluationRequest.build(MESSAGES, ["mock/a", "mock/b"], Settings())
    events = run_events(request, lambda model_id: MockStreamAdapter(model_id, delay=0.001))
    for model_id in ("mock/a", "mock/b"):
        own = [e for e in events if e.model_id == model_id]
        assert own[-1].is_terminal
        assert sum(e.is_terminal for e in own) == 1
        assert "".join(e.text for e in own if isinstance(e, ContentDelta)) == (
            "Why did the mock cross the road? To stub the other side."
        )


def test_exploding_adapter_does_not_affect_siblings():
    mapping = {
        "mock/a": lambda m: MockStreamAdapter(m, delay=0.002),
        "bad/boom": ExplodingAdapter,
        "mock/c": lambda m: MockStreamAdapter(m, delay=0.002),
    }
    request = EvaluationRequest.build(MESSAGES, list(mapping), Settings())
    events = run_events(request, factory_from(mapping))

    by_model = {e.model_id: e for e in terminal_events(events)}
    assert isinstance(by_model["mock/a"], Done)
    assert isinstance(by_model["mock/c"], Done)
    boom = by_model["bad/boom"]
    assert isinstance(boom, Failed)
    assert boom.error_kind is ErrorKind.UPSTREAM_ERROR
    assert "socket on fire" in boom.message
    assert ContentDelta("bad/boom", "chunk0") in events


def test_factory_failure_is_isolated():
    def factory(model_id):
        if model_id == "bad/factory":
            raise ValueError("no adapter for you")
        return MockStreamAdapter(model_id)

    request = EvaluationRequest.build(MESSAGES, ["bad/factory", "mock/ok"], Settings())
    terminals = {e.model_id: e for e in terminal_events(run_events(request, factory))}
    assert isinstance(terminals["bad/factory"], Failed)
    assert isinstance(terminals["mock/ok"], Done)


def test_typed_errors_keep_their_kind():
    request = EvaluationRequest.build(MESSAGES, ["x/limited"], Settings())
    events = run_events(request, RaisingTypedAdapter)
    assert events == [Failed("x/limited", ErrorKind.RATE_LIMITED, "too many requests")]


def test_events_after_terminal_are_dropped():
    request = EvaluationRequest.build(MESSAGES, ["x/chatty"], Settings())
    events = run_events(request, ChattyAdapter)
    assert [type(e) for e in events] == [ContentDelta, Done]


def test_missing_terminal_is_synthesized():
    request = EvaluationRequest.build(MESSAGES, ["x/silent"], Settings())
    events = run_events(request, SilentAdapter)
    assert events[0] == ContentDelta("x/silent", "partial")
    assert isinstance(events[1], Failed)
    assert len(events) == 2


def test_closing_the_stream_cancels_in_flight_models():
    closed = []

    class HangingAdapter:
        def __init__(self, model_id):
            self.id = model_id

        async def stream(self, messages, config):
            try:
                yield ContentDelta(self.id, "start")
                await asyncio.sleep(3600)
                yield ContentDelta(self.id, "never")
            finally:
                closed.append(self.id)

    async def _run():
        request = EvaluationRequest.build(MESSAGES, ["x/hang1", "x/hang2"], Settings())
        stream = evaluate(request, HangingAdapter)
        first = await stream.__anext__()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(stream.aclose(), timeout=5)
        return first

    first = asyncio.run(_run())
    assert isinstance(first, ContentDelta)
    assert sorted(closed) == ["x/hang1", "x/hang2"]


def test_evaluate_single_reuses_guarantees():
    async def _run():
        return [
            e
            async for e in evaluate_single("bad/boom", MESSAGES, Settings(), factory=ExplodingAdapter)
        ]

    events = asyncio.run(_run())
    assert isinstance(events[-1], Failed)
    assert sum(e.is_terminal for e in events) == 1


def test_two_model_scenario_success_and_rate_limit():
    def handler(request):
        model = json.loads(request.content)["model"]
        if model == "model/a":
            return httpx.Response(
                200,
                content=b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n',
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(429, json={"error": {"message": "rate-limited"}})

    transport = httpx.MockTransport(handler)

    def factory(model_id):
        return OpenRouterStreamAdapter(model_id, config=TEST_CONFIG, transport=transport)

    request = EvaluationRequest.build(MESSAGES, ["model/a", "model/b"], Settings())
    events = run_events(request, factory)

    assert [e for e in events if isinstance(e, ContentDelta)] == [ContentDelta("model/a", "Hi")]
    terminals = {e.model_id: e for e in terminal_events(events)}
    assert len(terminal_events(events)) == 2
    assert isinstance(terminals["model/a"], Done)
    assert terminals["model/a"].metrics.token_count == 1
    failed = terminals["model/b"]
    assert isinstance(failed, Failed)
    assert failed.error_kind is ErrorKind.RATE_LIMITED
    assert "rate-limited" in failed.message


def test_thinking_scenario_through_collect():
    ticks = iter([0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        frames = [
            {"choices": [{"delta": {"reasoning": "one "}}]},
            {"choices": [{"delta": {"reasoning": "two "}}]},
            {"choices": [{"delta": {"reasoning": "three"}}]},
            {"choices": [{"delta": {"content": "Final "}}]},
            {"choices": [{"delta": {"content": "answer"}}]},
        ]
        body = "".join(f"data: {json.dumps(f)}\n\n" for f in frames).encode()
        return httpx.Response(200, content=body)

    def factory(model_id):
        return OpenRouterStreamAdapter(
            model_id, config=TEST_CONFIG, transport=httpx.MockTransport(handler), clock=lambda: next(ticks)
        )

    settings = Settings(thinking_enabled=True, thinking_budget=100)
    request = EvaluationRequest.build(MESSAGES, ["think/model"], settings)
    responses = asyncio.run(collect(request, factory))

    response = responses["think/model"]
    assert response.thinking_content == "one two three"
    assert response.content == "Final answer"
    assert response.thinking_duration > 0
    assert response.ttft == 1000
    assert response.error is None
    assert seen["body"]["reasoning"] == {"max_tokens": 100}
    assert "100 tokens" in seen["body"]["messages"][0]["content"]


def test_pick_replacement_model():
    candidates = ["a/free", "b/free", "c/free"]
    assert pick_replacement_model("a/free", candidates, in_use=["b/free"]) == "c/free"
    assert pick_replacement_model("a/free", ["a/free"]) is None
