"""Per-model request configuration resolution."""

from __future__ import annotations

from .prompt import budget_instruction
from .types import EffectiveConfig, ModelOverride, Settings


def _pick(override_value, global_value):
    return override_value if override_value is not None else global_value


def resolve(model_id: str, settings: Settings, joke_mode: bool = False) -> EffectiveConfig:
    """Merge global settings with the override registered for ``model_id``.

    Every field resolves independently: a value set on the override wins,
    anything left unset falls back to the global default. In joke mode the
    configured joke system prompt replaces the system prompt for all models.

    When thinking is enabled with a positive budget, an instruction bounding
    the reasoning length is appended to the system prompt, because not every
    provider honours the budget request field.
    """
    override = settings.model_overrides.get(model_id) or ModelOverride()

    system_prompt = _pick(override.system_prompt, settings.system_prompt)
    if joke_mode and settings.joke_system_prompt:
        system_prompt = settings.joke_system_prompt
    temperature = _pick(override.temperature, settings.temperature)
    thinking_enabled = _pick(override.thinking_enabled, settings.thinking_enabled)
    thinking_budget = _pick(override.thinking_budget, settings.thinking_budget)

    if thinking_enabled and thinking_budget > 0:
        system_prompt = f"{system_prompt}{budget_instruction(thinking_budget)}"

    return EffectiveConfig(
        system_prompt=system_prompt,
        temperature=temperature,
        thinking_enabled=thinking_enabled,
        thinking_budget=thinking_budget,
    )
