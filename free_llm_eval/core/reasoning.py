"""Normalization of provider reasoning deltas and reasoning request fields.

Providers behind the OpenAI-compatible API have exposed chain-of-thought
text under several names over time. Everything that knows about those names
lives here; the rest of the package only sees ``content`` and ``thinking``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# Checked in this order; the first non-empty string wins.
REASONING_FIELDS = ("reasoning", "reasoning_content", "thinking")
TEXT_DETAIL_TYPES = {"reasoning.text", "text"}


@dataclass(frozen=True)
class NormalizedDelta:
    content: str = ""
    thinking: str = ""


@dataclass(frozen=True)
class ProviderCapabilities:
    legacy_thinking_block: bool = False
    include_reasoning_flag: bool = False


DEFAULT_CAPABILITIES = ProviderCapabilities()

PROVIDER_CAPABILITIES: dict[str, ProviderCapabilities] = {
    "anthropic": ProviderCapabilities(legacy_thinking_block=True),
    "deepseek": ProviderCapabilities(include_reasoning_flag=True),
    "qwen": ProviderCapabilities(include_reasoning_flag=True),
    "tngtech": ProviderCapabilities(include_reasoning_flag=True),
}


def provider_of(model_id: str) -> str:
    """``"anthropic/claude-3.7-sonnet:free"`` -> ``"anthropic"``."""
    provider, sep, _ = model_id.partition("/")
    return provider.lower() if sep else ""


def capabilities_for(model_id: str) -> ProviderCapabilities:
    return PROVIDER_CAPABILITIES.get(provider_of(model_id), DEFAULT_CAPABILITIES)


def reasoning_request_fields(model_id: str, budget: int) -> dict[str, Any]:
    fields: dict[str, Any] = {"reasoning": {"max_tokens": budget}}
    caps = capabilities_for(model_id)
    if caps.legacy_thinking_block:
        fields["thinking"] = {"type": "enabled", "budget_tokens": budget}
    if caps.include_reasoning_flag:
        fields["include_reasoning"] = True
    return fields


def _first_delta(frame: dict[str, Any]) -> dict[str, Any]:
    choices = frame.get("choices")
    if not isinstance(choices, list) or not choices:
        return {}
    first = choices[0]
    if not isinstance(first, dict):
        return {}
    delta = first.get("delta")
    return delta if isinstance(delta, dict) else {}


def _details_text(details: Any) -> str:
    if not isinstance(details, list):
        return ""
    parts = []
    for entry in details:
        if not isinstance(entry, dict):
            continue
        if entry.get("type") in TEXT_DETAIL_TYPES and isinstance(entry.get("text"), str):
            parts.append(entry["text"])
    return "".join(parts)


def normalize_delta(frame: dict[str, Any]) -> NormalizedDelta:
    delta = _first_delta(frame)

    content = delta.get("content")
    if not isinstance(content, str):
        content = ""

    thinking = ""
    for name in REASONING_FIELDS:
        value = delta.get(name)
        if isinstance(value, str) and value:
            thinking = value
            break
    if not thinking:
        # OpenRouter repeats the plain field inside reasoning_details; only fall
        # back to the structured list when no plain field was sent.
        thinking = _details_text(delta.get("reasoning_details"))

    return NormalizedDelta(content=content, thinking=thinking)


def extract_completion_tokens(frame: dict[str, Any]) -> int | None:
    usage = frame.get("usage")
    if not isinstance(usage, dict):
        return None
    tokens = usage.get("completion_tokens")
    if isinstance(tokens, bool) or not isinstance(tokens, int):
        return None
    return tokens
