from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, field_validator

from compliance_adk.auth import HeaderIdentityProvider, Identity, IdentityProvider, StaticIdentityProvider
from compliance_adk.config import settings
from compliance_adk.models import (
    INDUSTRIES,
    AgentResponse,
    ChatMessage,
    Evidence,
    Policy,
    PolicyContext,
    utc_now_iso,
)
from compliance_adk.orchestrator import Orchestrator, suggest_questions

router = APIRouter()
_orch: Optional[Orchestrator] = None


def _get_orch() -> Orchestrator:
    global _orch
    if _orch is None:
        _orch = Orchestrator()
        _orch.open()
    return _orch


def set_orchestrator(orch: Optional[Orchestrator]) -> None:
    global _orch
    _orch = orch


def _dev_identity() -> IdentityProvider:
    if not settings.dev_user_id:
        return StaticIdentityProvider()
    email = settings.dev_user_email
    return StaticIdentityProvider(
        Identity(
            uid=settings.dev_user_id,
            email=email,
            display_name=email.split("@")[0] if email else None,
        )
    )


_fallback_identity: IdentityProvider = _dev_identity()


def _envelope(resp: AgentResponse) -> Dict[str, Any]:
    return jsonable_encoder(resp)


# ---------- Contracts ----------
class PolicyModel(BaseModel):
    id: str
    title: str
    content: str = ""
    rules: List[str] = Field(default_factory=list)
    last_updated: Optional[str] = None
    industry: Optional[str] = None
    is_indexed: bool = False

    @field_validator("industry")
    @classmethod
    def _known_industry(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in INDUSTRIES:
            raise ValueError(f"industry must be one of {', '.join(INDUSTRIES)}")
        return v

    def to_policy(self) -> Policy:
        return Policy(
            id=self.id,
            title=self.title,
            content=self.content,
            rules=list(self.rules),
            last_updated=self.last_updated or utc_now_iso(),
            industry=self.industry,
            is_indexed=self.is_indexed,
        )


class ChatMessageModel(BaseModel):
    id: str
    role: Literal["user", "model"]
    text: str
    timestamp: Optional[str] = None

    def to_message(self) -> ChatMessage:
        return ChatMessage(id=self.id, role=self.role, text=self.text, timestamp=self.timestamp or utc_now_iso())


class TextRequest(BaseModel):
    text: str


class EvidenceModel(BaseModel):
    type: Literal["image", "log"]
    # base64 for images, raw text for logs
    data: str
    filename: Optional[str] = None
    mime_type: str = "image/jpeg"


class AnalyzeRequest(BaseModel):
    session_id: str = "api-session"
    policy: Optional[PolicyModel] = None
    evidence: EvidenceModel


class QueryRequest(BaseModel):
    session_id: str = "chat-session"
    policy: Optional[PolicyModel] = None
    history: List[ChatMessageModel] = Field(default_factory=list)
    question: str


class ChatRequest(BaseModel):
    session_id: str = "chat-session"
    policy: PolicyModel
    question: str


# ---------- Policy ingestion & verification ----------
@router.post("/ingest/policy")
async def ingest_policy(file: UploadFile = File(...), policy_id: Optional[str] = Form(None)) -> Dict[str, Any]:
    orch = _get_orch()
    data = await file.read()
    policy: Optional[Policy] = None
    if policy_id:
        found = await orch.get_policy(policy_id)
        if not found.success:
            return _envelope(found)
        policy = found.data
    resp = await orch.ingest(
        data,
        file.content_type or "application/octet-stream",
        file.filename or "upload.bin",
        policy=policy,
    )
    return _envelope(resp)


@router.post("/policies/verify")
async def verify_policy(req: TextRequest) -> Dict[str, Any]:
    return _envelope(await _get_orch().verify(req.text))


@router.post("/policies/rules")
async def extract_rules(req: TextRequest) -> Dict[str, Any]:
    return _envelope(await _get_orch().extract_rules(req.text))


# ---------- Policy library ----------
@router.post("/policies/save")
async def save_policy(req: PolicyModel) -> Dict[str, Any]:
    return _envelope(await _get_orch().save(req.to_policy()))


@router.get("/policies")
async def list_policies() -> Dict[str, Any]:
    return _envelope(await _get_orch().list_policies())


@router.get("/policies/{policy_id}")
async def get_policy(policy_id: str) -> Dict[str, Any]:
    return _envelope(await _get_orch().get_policy(policy_id))


@router.delete("/policies/{policy_id}")
async def archive_policy(policy_id: str) -> Dict[str, Any]:
    return _envelope(await _get_orch().archive(policy_id))


@router.post("/admin/load_defaults")
async def load_defaults() -> Dict[str, Any]:
    return _envelope(await _get_orch().load_defaults())


# ---------- Evidence analysis ----------
@router.post("/analyze")
async def analyze(req: AnalyzeRequest) -> Dict[str, Any]:
    ev = req.evidence
    data: bytes | str
    if ev.type == "image":
        try:
            data = base64.b64decode(ev.data, validate=True)
        except (binascii.Error, ValueError):
            return _envelope(AgentResponse.fail("Image evidence must be base64 encoded.", error="ValidationFailure"))
    else:
        data = ev.data
    context = PolicyContext(
        session_id=req.session_id,
        active_policy=req.policy.to_policy() if req.policy else None,
    )
    evidence = Evidence(type=ev.type, data=data, filename=ev.filename, mime_type=ev.mime_type)
    return _envelope(await _get_orch().analyze(context, evidence))


# ---------- RAG ----------
@router.post("/rag/train")
async def train(req: PolicyModel) -> Dict[str, Any]:
    return _envelope(await _get_orch().train(req.to_policy()))


@router.post("/rag/query")
async def query(req: QueryRequest) -> Dict[str, Any]:
    context = PolicyContext(
        session_id=req.session_id,
        active_policy=req.policy.to_policy() if req.policy else None,
    )
    history = [m.to_message() for m in req.history]
    return _envelope(await _get_orch().query(history, req.question, context))


@router.post("/rag/chat")
async def chat(req: ChatRequest) -> Dict[str, Any]:
    return _envelope(await _get_orch().chat(req.policy.to_policy(), req.question, session_id=req.session_id))


@router.get("/rag/history/{policy_id}")
async def chat_history(policy_id: str) -> Dict[str, Any]:
    return _envelope(await _get_orch().chat_history(policy_id))


@router.delete("/rag/history/{policy_id}")
async def clear_chat_history(policy_id: str) -> Dict[str, Any]:
    return _envelope(await _get_orch().clear_chat(policy_id))


@router.get("/rag/suggestions/{policy_id}")
async def chat_suggestions(policy_id: str, n: int = 3) -> Dict[str, Any]:
    found = await _get_orch().get_policy(policy_id)
    if not found.success:
        return _envelope(found)
    return _envelope(AgentResponse.ok(suggest_questions(found.data, n=max(0, min(n, 10)))))


# ---------- Monitoring, reports, jobs ----------
@router.get("/monitor/health")
async def monitor_health() -> Dict[str, Any]:
    return _envelope(_get_orch().health())


@router.get("/reports/history")
async def audit_history() -> Dict[str, Any]:
    return _envelope(await _get_orch().audit_history())


@router.post("/jobs/trigger")
async def trigger_batch_job() -> Dict[str, Any]:
    return _envelope(await _get_orch().trigger_batch_job())


# ---------- Identity ----------
@router.get("/auth/me")
async def whoami(request: Request) -> Dict[str, Any]:
    user = HeaderIdentityProvider(request.headers).current_user() or _fallback_identity.current_user()
    if user is None:
        raise HTTPException(status_code=401, detail="No identity asserted")
    return jsonable_encoder(user)
