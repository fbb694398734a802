import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
import json

import httpx
import pytest

from free_llm_eval.adapters.openrouter_adapter import OpenRouterStreamAdapter, build_request_body, parse_frame
from free_llm_eval.core.errors import ErrorKind, StreamParseError
from free_llm_eval.core.openrouter import OpenRouterConfig
from free_llm_eval.core.types import ContentDelta, Done, EffectiveConfig, Failed, Message, ThinkingDelta

TEST_CONFIG = OpenRouterConfig(
    base_url="https://openrouter.test/api/v1",
    api_key="test-key",
    read_timeout=5.0,
    connect_timeout=5.0,
    referer="http://localhost:3000",
    title="Free LLM Evaluator",
)
PLAIN = EffectiveConfig(system_prompt="Be nice.", temperature=0.5, thinking_enabled=False, thinking_budget=0)
MESSAGES = [Message(role="user", content="Hello?")]


def sse(*frames):
    lines = []
    for frame in frames:
        payload = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def content(text):
    return {"choices": [{"delta": {"content": text}}]}


def make_clock(*ticks):
    it = iter(ticks)
    return lambda: next(it)


def run_adapter(handler, config=PLAIN, model_id="test/model", clock=None):
    kwargs = {"config": TEST_CONFIG, "transport": httpx.MockTransport(handler)}
    if clock is not None:
        kwargs["clock"] = clock
    adapter = OpenRouterStreamAdapter(model_id, **kwargs)

    async def _collect():
        return [event async for event in adapter.stream(MESSAGES, config)]

    return asyncio.run(_collect())


def test_request_body_without_thinking():
    body = build_request_body("test/model", MESSAGES, PLAIN)
    assert body["model"] == "test/model"
    assert body["stream"] is True
    assert body["temperature"] == 0.5
    assert body["messages"][0] == {"role": "system", "content": "Be nice."}
    assert body["messages"][1] == {"role": "user", "content": "Hello?"}
    assert "max_tokens" not in body
    assert "reasoning" not in body


def test_request_body_with_thinking_raises_ceiling():
    config = EffectiveConfig(system_prompt="x", temperature=0.7, thinking_enabled=True, thinking_budget=3000)
    body = build_request_body("anthropic/claude-3.7-sonnet", MESSAGES, config)
    assert body["reasoning"] == {"max_tokens": 3000}
    assert body["thinking"] == {"type": "enabled", "budget_tokens": 3000}
    assert body["max_tokens"] == 5048

    small = EffectiveConfig(system_prompt="x", temperature=0.7, thinking_enabled=True, thinking_budget=100)
    assert build_request_body("google/gemini", MESSAGES, small)["max_tokens"] == 4096


def test_streams_content_and_done():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, content=sse(content("Hel"), content("lo"), "[DONE]"))

    events = run_adapter(handler)
    assert events[:2] == [ContentDelta("test/model", "Hel"), ContentDelta("test/model", "lo")]
    assert isinstance(events[-1], Done)
    assert len(events) == 3
    assert events[-1].metrics.token_count == 2
    assert seen["auth"] == "Bearer test-key"
    assert seen["path"] == "/api/v1/chat/completions"


def test_openrouter_prefix_is_stripped_from_request():
    seen = {}

    def handler(request):
        seen["model"] = json.loads(request.content)["model"]
        return httpx.Response(200, content=sse("[DONE]"))

    events = run_adapter(handler, model_id="openrouter:test/model")
    assert seen["model"] == "test/model"
    assert events[-1].model_id == "openrouter:test/model"


def test_malformed_frame_is_skipped():
    body = sse(content("A"), "{not json", "[1, 2]", content("B"), "[DONE]")

    events = run_adapter(lambda request: httpx.Response(200, content=body))
    texts = [e.text for e in events if isinstance(e, ContentDelta)]
    assert texts == ["A", "B"]
    assert isinstance(events[-1], Done)


def test_comment_and_blank_lines_are_ignored():
    body = b": OPENROUTER PROCESSING\n\n" + sse(content("ok")) + b"event: ping\n\n"

    events = run_adapter(lambda request: httpx.Response(200, content=body))
    assert events[0] == ContentDelta("test/model", "ok")
    assert isinstance(events[1], Done)


def test_usage_overrides_token_estimate():
    body = sse(content("x" * 70), {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 9}}, "[DONE]")

    events = run_adapter(lambda request: httpx.Response(200, content=body))
    assert events[-1].metrics.token_count == 9


def test_rate_limit_status():
    events = run_adapter(lambda request: httpx.Response(429, json={"error": {"message": "rate-limited"}}))
    assert len(events) == 1
    assert isinstance(events[0], Failed)
    assert events[0].error_kind is ErrorKind.RATE_LIMITED
    assert "rate-limited" in events[0].message


def test_rate_limit_wording_without_429():
    events = run_adapter(
        lambda request: httpx.Response(400, json={"error": {"message": "Rate limit exceeded: free-models-per-day"}})
    )
    assert events[0].error_kind is ErrorKind.RATE_LIMITED


def test_data_policy_error_points_to_privacy_settings():
    body = {"error": {"message": "No endpoints found matching your data policy (Free model publication)"}}
    events = run_adapter(lambda request: httpx.Response(404, json=body))
    assert events[0].error_kind is ErrorKind.DATA_POLICY_REQUIRED
    assert "https://openrouter.ai/settings/privacy" in events[0].message


def test_plain_text_error_body():
    events = run_adapter(lambda request: httpx.Response(500, text="upstream exploded"))
    assert events[0].error_kind is ErrorKind.UPSTREAM_ERROR
    assert "upstream exploded" in events[0].message
    assert "500" in events[0].message


def test_mid_stream_error_frame():
    body = sse(content("part"), {"error": {"message": "Provider returned error", "code": 502}}, content("never"))
    events = run_adapter(lambda request: httpx.Response(200, content=body))
    assert events[0] == ContentDelta("test/model", "part")
    assert isinstance(events[1], Failed)
    assert events[1].error_kind is ErrorKind.UPSTREAM_ERROR
    assert len(events) == 2


def test_connection_failure_becomes_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    events = run_adapter(handler)
    assert len(events) == 1
    assert events[0].error_kind is ErrorKind.TRANSPORT_ERROR


def test_frames_split_across_chunks():
    body = sse({"choices": [{"delta": {"content": "héllo wörld"}}]}, "[DONE]")

    async def chunks():
        for i in range(0, len(body), 5):
            yield body[i : i + 5]

    events = run_adapter(lambda request: httpx.Response(200, content=chunks()))
    assert events[0] == ContentDelta("test/model", "héllo wörld")


def test_thinking_scenario_metrics():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            content=sse(
                {"choices": [{"delta": {"reasoning": "First, "}}]},
                {"choices": [{"delta": {"reasoning_content": "then "}}]},
                {"choices": [{"delta": {"reasoning_details": [{"type": "reasoning.text", "text": "done."}]}}]},
                content("The answer "),
                content("is 4."),
            ),
        )

    config = EffectiveConfig(system_prompt="x", temperature=0.7, thinking_enabled=True, thinking_budget=100)
    events = run_adapter(handler, config=config, clock=make_clock(0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0))

    assert seen["body"]["reasoning"] == {"max_tokens": 100}
    assert seen["body"]["max_tokens"] == 4096
    assert "".join(e.text for e in events if isinstance(e, ThinkingDelta)) == "First, then done."
    assert "".join(e.text for e in events if isinstance(e, ContentDelta)) == "The answer is 4."
    metrics = events[-1].metrics
    assert metrics.ttft == 1000
    assert metrics.thinking_duration == 2000
    assert metrics.duration == 6000


def test_parse_frame_rejects_bad_payloads():
    assert parse_frame('{"choices": []}') == {"choices": []}
    for data in ("{not json", "[1, 2]", "null"):
        with pytest.raises(StreamParseError):
            parse_frame(data)
