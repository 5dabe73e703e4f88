from __future__ import annotations

import logging
from typing import List, Optional

from google.cloud import firestore

from compliance_adk.models import Policy, utc_now_iso
from compliance_adk.storage.kv import LocalKeyValueStore

logger = logging.getLogger(__name__)

POLICIES_TABLE = "policies"


class KVMetadataStore:
    """Policy table kept as a single JSON array under a fixed key."""

    def __init__(self, kv: LocalKeyValueStore, table: str = POLICIES_TABLE) -> None:
        self.kv = kv
        self.table = table

    def open(self) -> None:
        self.kv.open()

    def close(self) -> None:
        self.kv.close()

    def _rows(self) -> List[dict]:
        return list(self.kv.get(self.table, []) or [])

    def get_all(self) -> List[Policy]:
        return [Policy.from_dict(r) for r in self._rows()]

    def get(self, policy_id: str) -> Optional[Policy]:
        for r in self._rows():
            if str(r.get("id")) == policy_id:
                return Policy.from_dict(r)
        return None

    def save(self, policy: Policy) -> None:
        rows = self._rows()
        row = policy.to_dict()
        for i, r in enumerate(rows):
            if str(r.get("id")) == policy.id:
                rows[i] = row
                break
        else:
            rows.insert(0, row)
        self.kv.set(self.table, rows)
        logger.info("[MetadataStore] Transaction committed: policies/%s", policy.id)

    def delete(self, policy_id: str) -> None:
        rows = [r for r in self._rows() if str(r.get("id")) != policy_id]
        self.kv.set(self.table, rows)
        logger.info("[MetadataStore] Record deleted: policies/%s", policy_id)

    def count(self) -> int:
        return len(self._rows())


class FirestoreMetadataStore:
    """Policies as Firestore documents keyed by policy id.

    Newest-first ordering follows a ``created_at`` field written on first
    insert, so upserts keep their place in the listing.
    """

    def __init__(self, project: Optional[str] = None, collection: str = POLICIES_TABLE) -> None:
        self.project = project
        self.collection = collection
        self._fs = None

    def open(self) -> None:
        self._fs = firestore.Client(project=self.project)

    def close(self) -> None:
        if self._fs is not None:
            self._fs.close()
        self._fs = None

    def _col(self):
        if self._fs is None:
            raise RuntimeError("FirestoreMetadataStore is not open")
        return self._fs.collection(self.collection)

    def get_all(self) -> List[Policy]:
        docs = self._col().order_by("created_at", direction=firestore.Query.DESCENDING).stream()
        return [Policy.from_dict(d.to_dict()) for d in docs]

    def get(self, policy_id: str) -> Optional[Policy]:
        snap = self._col().document(policy_id).get()
        if not snap.exists:
            return None
        return Policy.from_dict(snap.to_dict())

    def save(self, policy: Policy) -> None:
        ref = self._col().document(policy.id)
        snap = ref.get()
        row = policy.to_dict()
        row["created_at"] = snap.to_dict().get("created_at") if snap.exists else utc_now_iso()
        ref.set(row)
        logger.info("[Firestore] Transaction committed: %s/%s", self.collection, policy.id)

    def delete(self, policy_id: str) -> None:
        self._col().document(policy_id).delete()
        logger.info("[Firestore] Record deleted: %s/%s", self.collection, policy_id)

    def count(self) -> int:
        return sum(1 for _ in self._col().stream())
