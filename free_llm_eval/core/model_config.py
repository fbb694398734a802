"""Adapter construction for evaluated models."""

from __future__ import annotations

import os

import httpx

from ..adapters.base import AdapterFactory, StreamAdapter
from ..adapters.mock_adapter import MockStreamAdapter
from ..adapters.openrouter_adapter import OpenRouterStreamAdapter
from .openrouter import OpenRouterConfig, get_openrouter_config


def use_mocks() -> bool:
    return os.environ.get("FREE_LLM_EVAL_ENV", "real").lower() == "mock"


def create_adapter(
    model_id: str,
    config: OpenRouterConfig | None = None,
    mock: bool | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StreamAdapter:
    """Create the appropriate adapter for this model."""
    if mock is None:
        mock = use_mocks()
    if mock:
        return MockStreamAdapter(model=model_id)
    return OpenRouterStreamAdapter(model_id, config=config, transport=transport)


def adapter_factory(
    config: OpenRouterConfig | None = None,
    mock: bool | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AdapterFactory:
    """Bind shared construction arguments once per evaluation."""
    if mock is None:
        mock = use_mocks()
    if config is None and not mock:
        config = get_openrouter_config()

    def factory(model_id: str) -> StreamAdapter:
        return create_adapter(model_id, config=config, mock=mock, transport=transport)

    return factory
