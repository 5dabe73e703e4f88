from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Optional

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class LocalKeyValueStore:
    """Client-local key/value namespace: one JSON document per key.

    Stands in for browser-style local storage. Values are whole JSON documents;
    writes replace the document atomically via a rename.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def open(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        return None

    def _path(self, key: str) -> Path:
        return self.root / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        p = self._path(key)
        if not p.exists():
            return default
        return json.loads(p.read_text(encoding="utf-8"))

    def set(self, key: str, value: Any) -> None:
        p = self._path(key)
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
        tmp.replace(p)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def get_int(self, key: str) -> int:
        value: Optional[Any] = self.get(key)
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    def incr(self, key: str, by: int = 1) -> int:
        value = self.get_int(key) + by
        self.set(key, value)
        return value
