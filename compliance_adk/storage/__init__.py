from __future__ import annotations

from dataclasses import dataclass
from typing import List

from compliance_adk.config import Settings
from .analytics import JsonlAnalyticsSink
from .base import AnalyticsSink, EventLog, MetadataStore, ObjectStore, VectorIndexStore
from .chat_history import ChatHistoryStore
from .event_log import SqlEventLog
from .kv import LocalKeyValueStore
from .metadata_store import FirestoreMetadataStore, KVMetadataStore
from .object_store import GCSObjectStore, LocalObjectStore
from .vector_index import KVVectorIndex


@dataclass
class StorageBundle:
    """The five storage facades plus chat history, opened and closed together."""

    objects: ObjectStore
    metadata: MetadataStore
    vectors: VectorIndexStore
    events: EventLog
    analytics: AnalyticsSink
    chats: ChatHistoryStore

    def _members(self) -> List:
        return [self.objects, self.metadata, self.vectors, self.events, self.analytics, self.chats]

    def open(self) -> None:
        for store in self._members():
            store.open()

    def close(self) -> None:
        for store in reversed(self._members()):
            store.close()


def build_stores(settings: Settings) -> StorageBundle:
    kv = LocalKeyValueStore(settings.kv_dir)
    if settings.storage_backend == "gcp":
        objects: ObjectStore = GCSObjectStore(settings.gcs_bucket, project=settings.gcp_project)
        metadata: MetadataStore = FirestoreMetadataStore(
            project=settings.firestore_project, collection=settings.firestore_collection
        )
    elif settings.storage_backend == "local":
        objects = LocalObjectStore(settings.objects_dir, bucket=settings.gcs_bucket)
        metadata = KVMetadataStore(kv)
    else:
        raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")
    return StorageBundle(
        objects=objects,
        metadata=metadata,
        vectors=KVVectorIndex(kv),
        events=SqlEventLog(settings.resolved_event_log_url),
        analytics=JsonlAnalyticsSink(settings.analytics_path),
        chats=ChatHistoryStore(kv),
    )


__all__ = [
    "AnalyticsSink",
    "ChatHistoryStore",
    "EventLog",
    "FirestoreMetadataStore",
    "GCSObjectStore",
    "JsonlAnalyticsSink",
    "KVMetadataStore",
    "KVVectorIndex",
    "LocalKeyValueStore",
    "LocalObjectStore",
    "MetadataStore",
    "ObjectStore",
    "SqlEventLog",
    "StorageBundle",
    "VectorIndexStore",
    "build_stores",
]
