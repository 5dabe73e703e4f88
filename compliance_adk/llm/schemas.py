"""Response contracts for structured Gemini calls.

Each structured call declares a ``response_schema`` for the model and decodes
the returned text through a pydantic model. Decoding never guesses silently:
``decode`` returns the validated value together with the ``ModelOutputError``
that forced a fallback, if any.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from compliance_adk.errors import ModelOutputError
from compliance_adk.models import RiskLevel

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_RISK_ENUM = [r.value for r in RiskLevel]

INGESTION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "textContent": {"type": "STRING"},
        "rules": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
}

RULES_SCHEMA = {"type": "ARRAY", "items": {"type": "STRING"}}

ANALYSIS_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "overallRisk": {"type": "STRING", "enum": _RISK_ENUM},
        "score": {"type": "NUMBER", "description": "Compliance score from 0 to 100"},
        "summary": {"type": "STRING"},
        "violations": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "description": {"type": "STRING"},
                    "severity": {"type": "STRING", "enum": _RISK_ENUM},
                    "recommendation": {"type": "STRING"},
                },
            },
        },
    },
}


def _as_text(v: Any) -> str:
    # models occasionally emit numbers or nested values where text is expected
    if v is None:
        return ""
    if isinstance(v, str):
        return v
    if isinstance(v, (dict, list)):
        return json.dumps(v, ensure_ascii=False)
    return str(v)


class IngestionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text_content: Optional[str] = Field(default=None, alias="textContent")
    rules: List[str] = Field(default_factory=list)

    @field_validator("rules", mode="before")
    @classmethod
    def _rules_list(cls, v: Any) -> Any:
        return [] if v is None else v


class RulesPayload(BaseModel):
    rules: List[str] = Field(default_factory=list)


class ViolationPayload(BaseModel):
    description: str = ""
    severity: RiskLevel = RiskLevel.LOW
    recommendation: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, v: Any) -> RiskLevel:
        return RiskLevel.coerce(v)

    @field_validator("description", "recommendation", mode="before")
    @classmethod
    def _text_fields(cls, v: Any) -> str:
        return _as_text(v)


class AnalysisPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    overall_risk: RiskLevel = Field(default=RiskLevel.LOW, alias="overallRisk")
    score: float = 100.0
    summary: str = "No anomalies detected."
    violations: List[ViolationPayload] = Field(default_factory=list)

    @field_validator("overall_risk", mode="before")
    @classmethod
    def _coerce_risk(cls, v: Any) -> RiskLevel:
        return RiskLevel.coerce(v)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v: Any) -> float:
        if v is None or isinstance(v, bool):
            return 100.0
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 100.0
        if score != score:  # NaN
            return 100.0
        return max(0.0, min(100.0, score))

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_default(cls, v: Any) -> str:
        return _as_text(v) or "No anomalies detected."

    @field_validator("violations", mode="before")
    @classmethod
    def _violations_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, list):
            return [item for item in v if isinstance(item, dict)]
        return v


@dataclass(frozen=True)
class Decoded(Generic[M]):
    value: M
    error: Optional[ModelOutputError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_json(text: Optional[str]) -> Any:
    """Parse model text as JSON or raise ``ModelOutputError``."""
    raw = (text or "").strip()
    if not raw:
        raise ModelOutputError(ModelOutputError.EMPTY)
    # Some models still fence JSON even in JSON mode
    if raw.startswith("```"):
        raw = raw.strip("`")
        if raw.lower().startswith("json"):
            raw = raw[4:]
        raw = raw.strip()
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ModelOutputError(ModelOutputError.MALFORMED_JSON, str(e)) from e


def validate(data: Any, model_cls: Type[M]) -> M:
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise ModelOutputError(ModelOutputError.SCHEMA_MISMATCH, str(e)) from e


def decode_strict(text: Optional[str], model_cls: Type[M]) -> M:
    return validate(parse_json(text), model_cls)


def decode(text: Optional[str], model_cls: Type[M]) -> Decoded[M]:
    """Decode with a default fallback; the error, if any, is kept on the result."""
    try:
        return Decoded(value=decode_strict(text, model_cls))
    except ModelOutputError as e:
        logger.warning("Falling back to default %s: %s", model_cls.__name__, e)
        return Decoded(value=model_cls(), error=e)


def decode_rules(text: Optional[str]) -> List[str]:
    data = parse_json(text)
    if isinstance(data, dict):
        data = data.get("rules")
    return validate({"rules": data}, RulesPayload).rules
