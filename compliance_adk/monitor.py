from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from compliance_adk.models import StorageUsage, SystemHealth
from compliance_adk.storage import StorageBundle

logger = logging.getLogger(__name__)


class SystemMonitor:
    """Derives a health snapshot from the storage facade counters."""

    def __init__(self, stores: StorageBundle, active_jobs: Callable[[], int] = lambda: 0) -> None:
        self.stores = stores
        self.active_jobs = active_jobs
        self.started_at = time.monotonic()

    @staticmethod
    def _safe_count(name: str, fn: Callable[[], int]) -> Optional[int]:
        try:
            return int(fn())
        except Exception as e:
            logger.warning("Health check for %s failed: %s", name, e)
            return None

    def get_health(self) -> SystemHealth:
        start = time.perf_counter()
        usage = StorageUsage(
            metadata_rows=self._safe_count("metadata", self.stores.metadata.count),
            vector_entries=self._safe_count("vectors", self.stores.vectors.count),
            objects=self._safe_count("objects", self.stores.objects.count),
            analytics_rows=self._safe_count("analytics", self.stores.analytics.count),
            event_rows=self._safe_count("events", self.stores.events.count),
        )
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        counts = [
            usage.metadata_rows,
            usage.vector_entries,
            usage.objects,
            usage.analytics_rows,
            usage.event_rows,
        ]
        failed = sum(1 for p in counts if p is None)
        if failed == 0:
            status = "healthy"
        elif failed == len(counts):
            status = "down"
        else:
            status = "degraded"
        return SystemHealth(
            status=status,
            latency_ms=latency_ms,
            active_jobs=self.active_jobs(),
            storage_usage=usage,
            uptime_seconds=round(time.monotonic() - self.started_at, 3),
        )
