"""Flat-file storage for user settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .prompt import DEFAULT_JOKE_SYSTEM_PROMPT
from .types import Settings

DEFAULT_SETTINGS: dict[str, Any] = {
    "system_prompt": "You are a helpful assistant.",
    "temperature": 0.7,
    "thinking_enabled": False,
    "thinking_budget": 1024,
    "joke_system_prompt": DEFAULT_JOKE_SYSTEM_PROMPT,
    "selected_models": [],
    "model_overrides": {},
}


class SettingsStore:
    """Reads and writes settings.yaml, filling gaps from DEFAULT_SETTINGS."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
        return data if isinstance(data, dict) else {}

    def load(self) -> Settings:
        merged = dict(DEFAULT_SETTINGS)
        merged.update({k: v for k, v in self._read().items() if v is not None})
        return Settings.from_dict(merged)

    def save(self, settings: Settings | dict[str, Any]) -> Settings:
        if isinstance(settings, dict):
            settings = Settings.from_dict({**DEFAULT_SETTINGS, **settings})
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(settings.to_dict(), handle, sort_keys=False, allow_unicode=True)
        return settings
