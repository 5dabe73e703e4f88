from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator, List

from compliance_adk.models import AnalysisResult

logger = logging.getLogger(__name__)


class JsonlAnalyticsSink:
    """Append-only analytics table of analysis results (one JSON row per line).

    Unreadable lines are skipped with a warning by both ``query`` and ``count``.
    """

    def __init__(self, path: Path, table: str = "dataset.compliance_logs") -> None:
        self.path = Path(path)
        self.table = table

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def close(self) -> None:
        return None

    def insert_row(self, row: AnalysisResult) -> None:
        logger.info("[Analytics] Streaming insert into table: %s id=%s risk=%s", self.table, row.id, row.overall_risk.value)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(row.to_dict(), ensure_ascii=False) + "\n")

    def _rows(self) -> Iterator[AnalysisResult]:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AnalysisResult.from_dict(json.loads(line))
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.warning("[Analytics] Skipping unreadable row %s:%d: %s", self.path.name, lineno, e)

    def query(self) -> List[AnalysisResult]:
        rows = list(self._rows())
        rows.reverse()
        return rows

    def count(self) -> int:
        return sum(1 for _ in self._rows())
