from __future__ import annotations

import asyncio
from contextlib import aclosing

import typer
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from ..api.client import EvaluatorClient
from ..core.collector import ResponseCollector
from ..core.conversation_store import ConversationStore, new_conversation
from ..core.errors import ErrorKind
from ..core.evaluator import evaluate, evaluate_single, pick_replacement_model
from ..core.leaderboard import (
    FUNNY_COLUMNS,
    PERFORMANCE_COLUMNS,
    funny_index,
    performance_leaderboard,
    render_table,
)
from ..core.logging_utils import configure_logging
from ..core.model_config import adapter_factory
from ..core.openrouter import fetch_free_models
from ..core.prompt import JOKE_CONVERSATION_PROMPT, joke_messages, user_messages
from ..core.runtime_data import get_runtime_paths
from ..core.settings_store import SettingsStore
from ..core.types import EvaluationRequest, Message, ModelResponse, Settings

app = typer.Typer()

METRIC_COLUMNS = ["model_id", "status", "duration", "ttft", "tokens", "thinking_tokens", "tps"]


def _resolve_models(models: str | None, settings: Settings) -> list[str]:
    if models:
        return [m.strip() for m in models.split(",") if m.strip()]
    return list(settings.selected_models)


async def _run_local(
    model_ids: list[str], messages: list[Message], settings: Settings, joke_mode: bool
) -> dict[str, ModelResponse]:
    request = EvaluationRequest.build(messages, model_ids, settings, joke_mode=joke_mode)
    collector = ResponseCollector(request.target_model_ids)
    async with aclosing(evaluate(request, adapter_factory())) as events:
        async for event in events:
            response = collector.apply(event)
            if event.is_terminal:
                status = "❌ " + response.error if response.error else "✅ done"
                typer.echo(f"[{event.model_id}] {status}")
    return collector.responses


async def _retry_single(
    model_id: str, messages: list[Message], settings: Settings, joke_mode: bool
) -> ModelResponse:
    collector = ResponseCollector([model_id])
    async with aclosing(
        evaluate_single(model_id, messages, settings, joke_mode=joke_mode, factory=adapter_factory())
    ) as events:
        async for event in events:
            collector.apply(event)
    return collector.responses[model_id]


def _swap_rate_limited(
    responses: dict[str, ModelResponse], messages: list[Message], settings: Settings, joke_mode: bool
) -> dict[str, ModelResponse]:
    candidates = [m["id"] for m in fetch_free_models()] or list(settings.selected_models)
    for model_id, response in list(responses.items()):
        if response.error_kind != ErrorKind.RATE_LIMITED.value:
            continue
        replacement = pick_replacement_model(model_id, candidates, in_use=responses.keys())
        if replacement is None:
            typer.echo(f"⚠️  No replacement available for {model_id}")
            continue
        typer.echo(f"🔁 {model_id} is rate limited, trying {replacement}")
        responses[replacement] = asyncio.run(_retry_single(replacement, messages, settings, joke_mode))
    return responses


def _metrics_rows(responses: dict[str, ModelResponse]) -> list[dict]:
    rows = []
    for model_id, r in responses.items():
        rows.append(
            {
                "model_id": model_id,
                "status": r.error_kind or "ok",
                "duration": r.duration,
                "ttft": r.ttft,
                "tokens": r.token_count,
                "thinking_tokens": r.thinking_token_count,
                "tps": r.tps,
            }
        )
    return rows


def _run_and_report(
    prompt_text: str,
    messages: list[Message],
    models: str | None,
    server: str | None,
    save: bool,
    swap_on_rate_limit: bool,
    joke_mode: bool,
) -> None:
    runtime_paths = get_runtime_paths()
    configure_logging(runtime_paths.logs_dir)
    settings = SettingsStore(runtime_paths.settings_path).load()
    model_ids = _resolve_models(models, settings)
    if not model_ids:
        typer.echo("❌ No models selected. Pass --models or set selected_models in settings.yaml")
        raise typer.Exit(1)

    typer.echo(f"🤖 Evaluating with models: {', '.join(model_ids)}")
    if server:
        client = EvaluatorClient(server)
        responses = asyncio.run(client.collect(model_ids, messages, joke_mode=joke_mode))
        if client.conversation_id:
            typer.echo(f"📁 Conversation ID: {client.conversation_id}")
    else:
        responses = asyncio.run(_run_local(model_ids, messages, settings, joke_mode))
        if swap_on_rate_limit:
            responses = _swap_rate_limited(responses, messages, settings, joke_mode)

    for model_id, response in responses.items():
        typer.echo("")
        typer.echo(f"=== {model_id} ===")
        if response.thinking_content:
            typer.echo(f"💭 {response.thinking_content}")
        typer.echo(response.content or response.error or "")

    typer.echo("")
    typer.echo(render_table(_metrics_rows(responses), METRIC_COLUMNS))

    if save and not server:
        conversation = new_conversation(prompt_text, responses, joke_mode=joke_mode)
        ConversationStore(runtime_paths.conversations_path).append(conversation)
        typer.echo(f"📁 Conversation ID: {conversation.id}")


@app.command("evaluate")
def evaluate_prompt(
    prompt: str,
    models: str = typer.Option(None, help="Comma-separated model ids"),
    server: str = typer.Option(None, help="Base URL of a running API server"),
    save: bool = typer.Option(True, help="Record the conversation for leaderboards"),
    swap_on_rate_limit: bool = typer.Option(False, help="Retry rate-limited models with another free model"),
) -> None:
    """Send one prompt to several models and compare their streamed answers."""
    _run_and_report(prompt, user_messages(prompt), models, server, save, swap_on_rate_limit, joke_mode=False)


@app.command("joke")
def tell_joke(
    models: str = typer.Option(None, help="Comma-separated model ids"),
    server: str = typer.Option(None, help="Base URL of a running API server"),
    save: bool = typer.Option(True, help="Record the conversation for leaderboards"),
) -> None:
    """Ask every selected model for a joke."""
    _run_and_report(JOKE_CONVERSATION_PROMPT, joke_messages(), models, server, save, False, joke_mode=True)


@app.command("models")
def list_models() -> None:
    """List the free models available upstream."""
    models = fetch_free_models()
    if not models:
        typer.echo("❌ No free models found. Check OPENROUTER_API_KEY.")
        raise typer.Exit(1)
    for model in models:
        typer.echo(f"  {model['id']} - {model['name']}")


@app.command("rate")
def rate(conversation_id: str, model_id: str, rating: str) -> None:
    """Rate one model's answer in a saved conversation as funny or not_funny."""
    store = ConversationStore(get_runtime_paths().conversations_path)
    try:
        store.set_rating(conversation_id, model_id, rating)
    except (KeyError, ValueError) as exc:
        typer.echo(f"❌ {exc.args[0]}")
        raise typer.Exit(1)
    typer.echo(f"✅ Rated {model_id} as {rating}")


@app.command("leaderboard")
def show_leaderboard() -> None:
    """Print the funny index and the performance leaderboard."""
    conversations = ConversationStore(get_runtime_paths().conversations_path).list()
    typer.echo("😂 Funny Index")
    typer.echo(render_table(funny_index(conversations), FUNNY_COLUMNS))
    typer.echo("")
    typer.echo("⚡ Performance")
    typer.echo(render_table(performance_leaderboard(conversations), PERFORMANCE_COLUMNS))


if __name__ == "__main__":
    app()
