"""Bundled reference policies, loaded through ``Orchestrator.load_defaults``.

They ship pre-indexed so the chat agent can answer against them straight away.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml

from compliance_adk.models import Policy, utc_now_iso

SEED_PATH = Path(__file__).resolve().parent / "seeds" / "default_policies.yaml"


def load_seed(path: Path = SEED_PATH) -> List[Dict[str, Any]]:
    if not path.exists():
        raise FileNotFoundError(f"Seed file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return list((yaml.safe_load(f) or {}).get("policies") or [])


def default_policies(path: Path = SEED_PATH) -> List[Policy]:
    now = utc_now_iso()
    return [
        Policy(
            id=d["id"],
            title=d["title"],
            content=d["content"],
            rules=list(d["rules"]),
            last_updated=now,
            industry=d["industry"],
            is_indexed=True,
        )
        for d in load_seed(path)
    ]
