from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

T = TypeVar("T")

INDUSTRIES = (
    "Manufacturing",
    "Healthcare",
    "Finance",
    "Retail",
    "Logistics",
    "Construction",
    "Technology",
    "Energy",
    "General",
)

# Reserved ids for greeting turns that are never sent to the model
SYNTHETIC_MESSAGE_IDS = frozenset({"init", "no-policy"})


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def coerce(cls, value: Any) -> "RiskLevel":
        """Map model output onto the enum; anything unrecognized is LOW."""
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.LOW


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


@dataclass
class Policy:
    id: str
    title: str
    content: str = ""
    rules: List[str] = field(default_factory=list)
    last_updated: str = field(default_factory=utc_now_iso)
    industry: Optional[str] = None
    is_indexed: bool = False

    def reingest(self, text: str, rules: List[str]) -> "Policy":
        # Replacing content invalidates any index built over the old text
        return replace(
            self,
            content=text,
            rules=list(rules),
            last_updated=utc_now_iso(),
            is_indexed=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Policy":
        return cls(
            id=str(d["id"]),
            title=d.get("title", ""),
            content=d.get("content", ""),
            rules=list(d.get("rules") or []),
            last_updated=d.get("last_updated") or utc_now_iso(),
            industry=d.get("industry"),
            is_indexed=bool(d.get("is_indexed", False)),
        )


@dataclass(frozen=True)
class Violation:
    description: str
    severity: RiskLevel
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "severity": self.severity.value,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Violation":
        return cls(
            description=d.get("description", ""),
            severity=RiskLevel.coerce(d.get("severity")),
            recommendation=d.get("recommendation", ""),
        )


@dataclass(frozen=True)
class AnalysisResult:
    id: str
    timestamp: str
    evidence_name: str
    evidence_type: Literal["image", "log"]
    overall_risk: RiskLevel
    score: float
    summary: str
    violations: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "evidence_name": self.evidence_name,
            "evidence_type": self.evidence_type,
            "overall_risk": self.overall_risk.value,
            "score": self.score,
            "summary": self.summary,
            "violations": [v.to_dict() for v in self.violations],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            id=str(d["id"]),
            timestamp=d.get("timestamp", ""),
            evidence_name=d.get("evidence_name", ""),
            evidence_type=d.get("evidence_type", "log"),
            overall_risk=RiskLevel.coerce(d.get("overall_risk")),
            score=float(d.get("score", 100)),
            summary=d.get("summary", ""),
            violations=tuple(Violation.from_dict(v) for v in d.get("violations") or []),
        )


@dataclass
class ChatMessage:
    id: str
    role: Literal["user", "model"]
    text: str
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def is_synthetic(self) -> bool:
        return self.id in SYNTHETIC_MESSAGE_IDS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=str(d["id"]),
            role=d.get("role", "user"),
            text=d.get("text", ""),
            timestamp=d.get("timestamp") or utc_now_iso(),
        )


@dataclass
class Evidence:
    type: Literal["image", "log"]
    data: bytes | str
    filename: Optional[str] = None
    mime_type: str = "image/jpeg"

    def as_bytes(self) -> bytes:
        if isinstance(self.data, bytes):
            return self.data
        return self.data.encode("utf-8")

    def as_text(self) -> str:
        if isinstance(self.data, str):
            return self.data
        return self.data.decode("utf-8", errors="replace")


@dataclass
class PolicyContext:
    session_id: str
    active_policy: Optional[Policy] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentResponse(Generic[T]):
    """Uniform envelope returned by every orchestrator operation."""

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None, **metadata: Any) -> "AgentResponse":
        return cls(success=True, data=data, message=message, metadata=metadata)

    @classmethod
    def fail(cls, message: str, **metadata: Any) -> "AgentResponse":
        return cls(success=False, message=message, metadata=metadata)


@dataclass(frozen=True)
class StorageUsage:
    metadata_rows: Optional[int]
    vector_entries: Optional[int]
    objects: Optional[int]
    analytics_rows: Optional[int]
    event_rows: Optional[int]


@dataclass(frozen=True)
class SystemHealth:
    status: Literal["healthy", "degraded", "down"]
    latency_ms: float
    active_jobs: int
    storage_usage: StorageUsage
    uptime_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
