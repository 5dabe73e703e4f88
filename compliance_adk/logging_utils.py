from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from compliance_adk.config import settings

EXCERPT_CHARS = 2000


def _excerpt(text: Optional[str]) -> str:
    text = text or ""
    if len(text) <= EXCERPT_CHARS:
        return text
    return text[:EXCERPT_CHARS] + f"... [{len(text) - EXCERPT_CHARS} chars truncated]"


def log_interaction(
    operation: str,
    model: str,
    prompt: str,
    model_output: Optional[str],
    meta: Optional[dict] = None,
    log_path: Optional[Path] = None,
) -> None:
    """Append a single model exchange to the interactions JSONL log.

    meta may include latency_ms, error kind, grounding source count, etc.
    """
    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
        "model": model,
        "prompt": _excerpt(prompt),
        "response": _excerpt(model_output),
    }
    if meta:
        entry["meta"] = meta
    path = log_path or settings.interactions_log_path
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
    except OSError:
        # Best-effort logging; avoid failing the operation
        pass
