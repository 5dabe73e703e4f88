from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from compliance_adk.models import AnalysisResult, Policy


@runtime_checkable
class Lifecycle(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...


class ObjectStore(Lifecycle, Protocol):
    """Unstructured blobs: uploaded policy documents and evidence."""

    def upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...

    def count(self) -> int: ...


class MetadataStore(Lifecycle, Protocol):
    """Transactional policy metadata.

    ``save`` is an upsert: an unseen id is inserted at the front of the
    collection, a known id is replaced in place. ``delete`` of an unknown id
    is a no-op.
    """

    def get_all(self) -> List[Policy]: ...

    def get(self, policy_id: str) -> Optional[Policy]: ...

    def save(self, policy: Policy) -> None: ...

    def delete(self, policy_id: str) -> None: ...

    def count(self) -> int: ...


class VectorIndexStore(Lifecycle, Protocol):
    def index_policy(self, policy_id: str, content: str) -> None: ...

    def remove(self, policy_id: str) -> None: ...

    def is_indexed(self, policy_id: str) -> bool: ...

    def count(self) -> int: ...


class EventLog(Lifecycle, Protocol):
    """Generic relational log of application events."""

    def log_event(self, event: str) -> None: ...

    def recent(self, limit: int = 50) -> List[str]: ...

    def count(self) -> int: ...


class AnalyticsSink(Lifecycle, Protocol):
    def insert_row(self, row: AnalysisResult) -> None: ...

    def query(self) -> List[AnalysisResult]: ...

    def count(self) -> int: ...
