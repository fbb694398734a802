"""Historical leaderboards built from saved conversations."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import pandas as pd

from .types import Conversation

FUNNY_COLUMNS = ["model_id", "funny", "not_funny", "total", "score"]
PERFORMANCE_COLUMNS = ["model_id", "runs", "errors", "avg_tps", "avg_ttft", "avg_duration"]


def responses_frame(conversations: Iterable[Conversation]) -> pd.DataFrame:
    rows = []
    for conversation in conversations:
        for model_id, response in conversation.responses.items():
            rows.append(
                {
                    "conversation_id": conversation.id,
                    "joke_mode": conversation.joke_mode,
                    "model_id": model_id,
                    "failed": response.error is not None,
                    "tps": response.tps,
                    "ttft": response.ttft,
                    "duration": response.duration,
                    "rating": response.rating,
                }
            )
    df = pd.DataFrame(
        rows,
        columns=["conversation_id", "joke_mode", "model_id", "failed", "tps", "ttft", "duration", "rating"],
    )
    for column in ("tps", "ttft", "duration"):
        df[column] = pd.to_numeric(df[column], errors="coerce")
    df["failed"] = df["failed"].astype(bool)
    return df


def funny_index(conversations: Iterable[Conversation]) -> list[dict]:
    """Share of rated jokes marked funny, per model."""
    df = responses_frame(conversations)
    df = df[df["rating"].isin(["funny", "not_funny"])]
    if df.empty:
        return []
    stats = (
        df.assign(
            funny=(df["rating"] == "funny").astype(int),
            not_funny=(df["rating"] == "not_funny").astype(int),
        )
        .groupby("model_id", as_index=False)[["funny", "not_funny"]]
        .sum()
    )
    stats["total"] = stats["funny"] + stats["not_funny"]
    stats["score"] = (stats["funny"] / stats["total"] * 100).round(1)
    stats = stats.sort_values(["score", "funny"], ascending=[False, False], kind="stable")
    return stats[FUNNY_COLUMNS].to_dict(orient="records")


def performance_leaderboard(conversations: Iterable[Conversation]) -> list[dict]:
    """Average throughput and latency of successful runs, per model."""
    df = responses_frame(conversations)
    if df.empty:
        return []
    grouped = df.groupby("model_id")
    board = pd.DataFrame(
        {
            "runs": grouped.size(),
            "errors": grouped["failed"].sum().astype(int),
        }
    )
    ok = df[~df["failed"]].groupby("model_id")
    board["avg_tps"] = ok["tps"].mean().round(2)
    board["avg_ttft"] = ok["ttft"].mean().round(0)
    board["avg_duration"] = ok["duration"].mean().round(0)
    board.index.name = "model_id"
    board = board.fillna(0).reset_index()
    board = board.sort_values(["avg_tps", "runs"], ascending=[False, False], kind="stable")
    return board[PERFORMANCE_COLUMNS].to_dict(orient="records")


def render_table(rows: Sequence[dict], columns: Sequence[str]) -> str:
    lines = ["| " + " | ".join(columns) + " |", "|" + "|".join("---" for _ in columns) + "|"]
    for row in rows:
        lines.append("| " + " | ".join(str(row.get(c, "")) for c in columns) + " |")
    return "\n".join(lines)
