from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_PREFIX = "openrouter:"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class OpenRouterConfig:
    base_url: str
    api_key: str
    read_timeout: float
    connect_timeout: float
    referer: str
    title: str
    proxy: str | None = None

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    def timeout(self) -> httpx.Timeout:
        # The read timeout applies per read, so it acts as an idle timeout on
        # long streams rather than a cap on total duration.
        return httpx.Timeout(self.read_timeout, connect=self.connect_timeout)


def get_openrouter_config() -> OpenRouterConfig:
    return OpenRouterConfig(
        base_url=os.environ.get("FREE_LLM_EVAL_BASE_URL", "").strip() or OPENROUTER_BASE_URL,
        api_key=os.environ.get("OPENROUTER_API_KEY", ""),
        read_timeout=_env_float("FREE_LLM_EVAL_READ_TIMEOUT", 120.0),
        connect_timeout=_env_float("FREE_LLM_EVAL_CONNECT_TIMEOUT", 15.0),
        referer=os.environ.get("FREE_LLM_EVAL_REFERER", "http://localhost:3000"),
        title=os.environ.get("FREE_LLM_EVAL_TITLE", "Free LLM Evaluator"),
        proxy=os.environ.get("HTTPS_PROXY") or os.environ.get("HTTP_PROXY") or None,
    )


def strip_prefix(model_id: str) -> str:
    if model_id.startswith(OPENROUTER_PREFIX):
        return model_id[len(OPENROUTER_PREFIX) :]
    return model_id


def is_free(entry: dict[str, Any]) -> bool:
    name = str(entry.get("name") or "").lower()
    model_id = str(entry.get("id") or "").lower()
    return "free" in name or "free" in model_id


def fetch_models(
    config: OpenRouterConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> list[dict[str, Any]]:
    config = config or get_openrouter_config()
    if not config.api_key:
        return []
    client_kwargs: dict[str, Any] = {"base_url": config.base_url, "timeout": 30}
    if transport is not None:
        client_kwargs["transport"] = transport
    elif config.proxy:
        client_kwargs["proxy"] = config.proxy
    with httpx.Client(**client_kwargs) as client:
        for attempt in Retrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(min=1, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                resp = client.get("/models", headers=config.headers())
        resp.raise_for_status()
        data = resp.json()
    models = data.get("data")
    if isinstance(models, list):
        return models
    return []


def normalize_models(raw_models: list[dict[str, Any]]) -> list[dict[str, Any]]:
    normalized = []
    for entry in raw_models:
        model_id = entry.get("id")
        if not model_id:
            continue
        clean_id = strip_prefix(model_id)
        normalized.append(
            {
                "id": clean_id,
                "name": entry.get("name") or clean_id,
                "description": entry.get("description") or "",
                "context_length": entry.get("context_length"),
                "pricing": entry.get("pricing"),
            }
        )
    return normalized


def fetch_free_models(
    config: OpenRouterConfig | None = None,
    transport: httpx.BaseTransport | None = None,
) -> list[dict[str, Any]]:
    """Return the catalog entries that can be used without credits."""
    try:
        raw = fetch_models(config, transport=transport)
    except httpx.HTTPError as exc:
        logger.error("Error fetching models: %s", exc)
        return []
    return normalize_models([entry for entry in raw if is_free(entry)])
