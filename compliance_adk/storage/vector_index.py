from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict

from compliance_adk.models import utc_now_iso
from compliance_adk.storage.kv import LocalKeyValueStore

logger = logging.getLogger(__name__)

VECTOR_REGISTRY_KEY = "vector_index"


class KVVectorIndex:
    """Registry of policies that have a retrieval index.

    No embeddings are computed; each policy holds one entry with a content
    fingerprint. Re-indexing a policy replaces its entry, so ``count`` is the
    number of indexed policies.
    """

    def __init__(self, kv: LocalKeyValueStore) -> None:
        self.kv = kv

    def open(self) -> None:
        self.kv.open()

    def close(self) -> None:
        self.kv.close()

    def _registry(self) -> Dict[str, Any]:
        return dict(self.kv.get(VECTOR_REGISTRY_KEY, {}) or {})

    def index_policy(self, policy_id: str, content: str) -> None:
        logger.info("[VectorIndex] Generating vector entries for policy:%s", policy_id)
        registry = self._registry()
        registry[policy_id] = {
            "sha256": hashlib.sha256(content.encode("utf-8")).hexdigest(),
            "chars": len(content),
            "indexed_at": utc_now_iso(),
        }
        self.kv.set(VECTOR_REGISTRY_KEY, registry)

    def remove(self, policy_id: str) -> None:
        registry = self._registry()
        if registry.pop(policy_id, None) is None:
            return
        self.kv.set(VECTOR_REGISTRY_KEY, registry)
        logger.info("[VectorIndex] Removed vector entries for policy:%s", policy_id)

    def is_indexed(self, policy_id: str) -> bool:
        return policy_id in self._registry()

    def count(self) -> int:
        return len(self._registry())
