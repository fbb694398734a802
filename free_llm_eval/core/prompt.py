from __future__ import annotations

from .types import Message

JOKE_USER_PROMPT = "Tell me a joke."
JOKE_CONVERSATION_PROMPT = "Tell me a joke (Joke Mode)"

DEFAULT_JOKE_SYSTEM_PROMPT = (
    "You are a stand-up comedian. Tell one short, original joke. "
    "Self-referential wit is welcome; no explanations after the punchline."
)

BUDGET_TEMPLATE = (
    "\n\nKeep your internal reasoning brief: think for at most {budget} tokens "
    "before you start writing your answer."
)


def budget_instruction(budget: int) -> str:
    return BUDGET_TEMPLATE.format(budget=budget)


def joke_messages() -> list[Message]:
    return [Message(role="user", content=JOKE_USER_PROMPT)]


def user_messages(prompt: str) -> list[Message]:
    return [Message(role="user", content=prompt)]
