from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RuntimePaths:
    root: Path
    settings_path: Path
    conversations_path: Path
    logs_dir: Path


def build_runtime_paths(root: Path) -> RuntimePaths:
    logs_dir = root / "logs"

    root.mkdir(parents=True, exist_ok=True)
    logs_dir.mkdir(parents=True, exist_ok=True)

    return RuntimePaths(
        root=root,
        settings_path=root / "settings.yaml",
        conversations_path=root / "conversations.jsonl",
        logs_dir=logs_dir,
    )


def get_runtime_paths() -> RuntimePaths:
    env_path = os.environ.get("FREE_LLM_EVAL_DATA_DIR", "").strip()
    if env_path:
        root = Path(env_path)
    else:
        root = Path(__file__).resolve().parents[2] / "runtime-data"

    return build_runtime_paths(root)
