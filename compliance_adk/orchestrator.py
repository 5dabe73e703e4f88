from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from dataclasses import replace
from pathlib import PurePosixPath
from typing import Any, Dict, Iterator, List, Optional

from compliance_adk.config import Settings, settings as default_settings
from compliance_adk.errors import PreconditionFailure, ValidationFailure
from compliance_adk.llm.gateway import AIGateway
from compliance_adk.models import (
    AgentResponse,
    AnalysisResult,
    ChatMessage,
    Evidence,
    Policy,
    PolicyContext,
    RiskLevel,
    Violation,
    new_id,
    utc_now_iso,
)
from compliance_adk.monitor import SystemMonitor
from compliance_adk.seed import default_policies
from compliance_adk.storage import StorageBundle, build_stores
from compliance_adk.storage.chat_history import greeting_for

logger = logging.getLogger(__name__)

NOT_TRAINED_MESSAGE = "⚠️ This policy hasn't been trained yet."
CHAT_ERROR_TEXT = "I'm sorry, I'm having trouble connecting to the Knowledge Base right now."

INGEST_FAILED = "Ingestion failed."
VERIFY_FAILED = "Verification failed."
SAVE_FAILED = "Metadata commit failed."
LIST_FAILED = "Fetch failed."
DEFAULTS_FAILED = "Loading default policies failed."
ARCHIVE_FAILED = "Delete failed."
NO_POLICY = "No active policy context."
ANALYZE_FAILED = "Agent failed to analyze evidence."
TRAIN_FAILED = "Training failed."
RAG_FAILED = "Error contacting RAG Agent."
RULES_FAILED = "Rule extraction failed."
HISTORY_FAILED = "Audit history unavailable."
CHAT_HISTORY_FAILED = "Chat history unavailable."
BATCH_FAILED = "Batch job failed."


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _object_name(filename: Optional[str]) -> Optional[str]:
    """Final path component of a caller-supplied filename, or None if there is none."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    return name if name not in ("", ".", "..") else None


def _error_meta(e: BaseException) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"error": type(e).__name__}
    kind = getattr(e, "kind", None)
    if kind:
        meta["error_kind"] = kind
    return meta


def suggest_questions(policy: Policy, n: int = 3) -> List[str]:
    """Starter questions drawn from a random sample of the policy's rules."""
    rules = [r for r in policy.rules if r.strip()]
    picked = random.sample(rules, min(n, len(rules)))
    return [f"What is the rule about {' '.join(r.split()[:3])}?" for r in picked]


class Orchestrator:
    """
    Single façade over the storage facades and the Gemini gateway.
    Every public operation returns an ``AgentResponse`` envelope; failures are
    scoped to the call and earlier committed writes are not rolled back.
    """

    def __init__(
        self,
        stores: Optional[StorageBundle] = None,
        gateway: Optional[AIGateway] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.stores = stores or build_stores(self.settings)
        self.gateway = gateway or AIGateway(self.settings)
        self._active_jobs = 0
        self.monitor = SystemMonitor(self.stores, active_jobs=lambda: self._active_jobs)

    def open(self) -> None:
        self.stores.open()

    def close(self) -> None:
        self.stores.close()

    @contextmanager
    def _job(self) -> Iterator[None]:
        self._active_jobs += 1
        try:
            yield
        finally:
            self._active_jobs -= 1

    # ---------- Policy ingestion & verification ----------
    async def ingest(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        policy: Optional[Policy] = None,
    ) -> AgentResponse:
        """Upload a policy document and extract its text and rules.

        Nothing is persisted as a Policy here; when ``policy`` is given the
        response carries an unsaved, unindexed copy with the new content.
        """
        if not data:
            return AgentResponse.fail("Empty document.", error="ValidationFailure")
        start = time.perf_counter()
        with self._job():
            try:
                logger.info("POST /ingest/policy - Processing %s", filename)
                key = f"policies/{_object_name(filename) or 'upload.bin'}"
                uri = self.stores.objects.upload(key, data, mime_type)
                self.stores.events.log_event(f"Ingest Policy: {filename}")
                result = await self.gateway.ingest_document(data, mime_type)
            except Exception as e:
                logger.exception("Policy ingestion failed: %s", filename)
                return AgentResponse.fail(INGEST_FAILED, **_error_meta(e))
        payload: Dict[str, Any] = {"text": result.text, "rules": result.rules, "uri": uri}
        if policy is not None:
            payload["policy"] = policy.reingest(result.text, result.rules)
        return AgentResponse.ok(payload, model=self.gateway.fast_model, latency_ms=_elapsed_ms(start))

    async def verify(self, text: str) -> AgentResponse:
        if not (text or "").strip():
            return AgentResponse.fail("Policy text is required.", error="ValidationFailure")
        start = time.perf_counter()
        with self._job():
            try:
                logger.info("POST /policies/verify - Checking compliance against web")
                result = await self.gateway.verify_policy(text)
            except Exception as e:
                logger.exception("Policy verification failed")
                return AgentResponse.fail(VERIFY_FAILED, **_error_meta(e))
        return AgentResponse.ok(result, model=self.gateway.fast_model, latency_ms=_elapsed_ms(start))

    async def extract_rules(self, text: str) -> AgentResponse:
        if not (text or "").strip():
            return AgentResponse.fail("Policy text is required.", error="ValidationFailure")
        start = time.perf_counter()
        with self._job():
            try:
                rules = await self.gateway.extract_rules(text)
            except Exception as e:
                logger.exception("Rule extraction failed")
                return AgentResponse.fail(RULES_FAILED, **_error_meta(e))
        return AgentResponse.ok(rules, model=self.gateway.fast_model, latency_ms=_elapsed_ms(start))

    # ---------- Policy library ----------
    @staticmethod
    def _validate_policy(policy: Policy) -> None:
        if not (policy.id or "").strip():
            raise ValidationFailure("Policy id is required.")
        if not (policy.title or "").strip():
            raise ValidationFailure("Policy title is required.")

    async def save(self, policy: Policy) -> AgentResponse:
        try:
            self._validate_policy(policy)
        except ValidationFailure as e:
            return AgentResponse.fail(str(e), error="ValidationFailure")
        try:
            self.stores.metadata.save(policy)
            self.stores.events.log_event(f"Update Policy: {policy.id}")
        except Exception as e:
            logger.exception("Saving policy %s failed", policy.id)
            return AgentResponse.fail(SAVE_FAILED, **_error_meta(e))
        return AgentResponse.ok(True)

    async def list_policies(self) -> AgentResponse:
        try:
            policies = self.stores.metadata.get_all()
        except Exception as e:
            logger.exception("Listing policies failed")
            return AgentResponse.fail(LIST_FAILED, **_error_meta(e))
        return AgentResponse.ok(policies)

    async def get_policy(self, policy_id: str) -> AgentResponse:
        try:
            policy = self.stores.metadata.get(policy_id)
        except Exception as e:
            logger.exception("Fetching policy %s failed", policy_id)
            return AgentResponse.fail(LIST_FAILED, **_error_meta(e))
        if policy is None:
            return AgentResponse.fail(f"Policy not found: {policy_id}")
        return AgentResponse.ok(policy)

    async def load_defaults(self) -> AgentResponse:
        logger.info("Loading bundled reference policies")
        policies = default_policies()
        try:
            for policy in policies:
                self.stores.metadata.save(policy)
                self.stores.vectors.index_policy(policy.id, policy.content)
            self.stores.events.log_event(f"Load Default Policies: {len(policies)}")
        except Exception as e:
            logger.exception("Loading default policies failed")
            return AgentResponse.fail(DEFAULTS_FAILED, **_error_meta(e))
        return AgentResponse.ok(len(policies))

    async def archive(self, policy_id: str) -> AgentResponse:
        """Delete a policy; callers holding it as active context must drop it."""
        try:
            self.stores.metadata.delete(policy_id)
            self.stores.events.log_event(f"Delete Policy: {policy_id}")
        except Exception as e:
            logger.exception("Archiving policy %s failed", policy_id)
            return AgentResponse.fail(ARCHIVE_FAILED, **_error_meta(e))
        return AgentResponse.ok(True)

    # ---------- Evidence analysis ----------
    async def analyze(self, context: PolicyContext, evidence: Evidence) -> AgentResponse:
        policy = context.active_policy
        if policy is None:
            return AgentResponse.fail(NO_POLICY, error="ValidationFailure")
        if evidence.type not in ("image", "log"):
            return AgentResponse.fail(f"Unsupported evidence type: {evidence.type}", error="ValidationFailure")

        start = time.perf_counter()
        with self._job():
            try:
                logger.info("POST /analyze - Processing %s evidence against %s", evidence.type, policy.id)
                name = _object_name(evidence.filename)
                key = f"evidence/{name}" if name else f"evidence/{int(time.time() * 1000)}_{evidence.type}.dat"
                content_type = evidence.mime_type if evidence.type == "image" else "text/plain"
                self.stores.objects.upload(key, evidence.as_bytes(), content_type)

                decoded = await self.gateway.analyze_evidence(policy.rules, evidence)
                payload = decoded.value
                default_name = "Image Evidence" if evidence.type == "image" else "Log/Text Evidence"
                result = AnalysisResult(
                    id=new_id(),
                    timestamp=utc_now_iso(),
                    evidence_name=evidence.filename or default_name,
                    evidence_type=evidence.type,
                    overall_risk=payload.overall_risk,
                    score=payload.score,
                    summary=payload.summary,
                    violations=tuple(
                        Violation(description=v.description, severity=v.severity, recommendation=v.recommendation)
                        for v in payload.violations
                    ),
                )
                self.stores.analytics.insert_row(result)
            except Exception as e:
                logger.exception("Evidence analysis failed for policy %s", policy.id)
                return AgentResponse.fail(ANALYZE_FAILED, **_error_meta(e))

        meta: Dict[str, Any] = {
            "model": self.gateway.fast_model,
            "latency_ms": _elapsed_ms(start),
            "policy_id": policy.id,
        }
        if decoded.error is not None:
            meta["decode_error"] = decoded.error.kind
        return AgentResponse(success=True, data=result, metadata=meta)

    # ---------- RAG training & query ----------
    async def train(self, policy: Policy) -> AgentResponse:
        try:
            self._validate_policy(policy)
        except ValidationFailure as e:
            return AgentResponse.fail(str(e), error="ValidationFailure")

        logger.info("POST /rag/train - Indexing policy %s", policy.id)
        with self._job():
            try:
                was_indexed = self.stores.vectors.is_indexed(policy.id)
                self.stores.vectors.index_policy(policy.id, policy.content)
            except Exception as e:
                logger.exception("Vector indexing failed for policy %s", policy.id)
                return AgentResponse.fail(TRAIN_FAILED, **_error_meta(e))

            updated = replace(policy, is_indexed=True)
            try:
                self.stores.metadata.save(updated)
            except Exception as e:
                logger.exception("Metadata update failed after indexing policy %s", policy.id)
                if not was_indexed:
                    try:
                        self.stores.vectors.remove(policy.id)
                    except Exception:
                        logger.exception("Could not roll back vector entry for policy %s", policy.id)
                return AgentResponse.fail(TRAIN_FAILED, **_error_meta(e))
        return AgentResponse.ok(updated, message="Policy indexed into vector store.")

    @staticmethod
    def _require_indexed(policy: Optional[Policy]) -> None:
        if policy is None:
            raise PreconditionFailure("no active policy")
        if not policy.is_indexed:
            raise PreconditionFailure(f"policy {policy.id} is not indexed")

    async def query(self, history: List[ChatMessage], question: str, context: PolicyContext) -> AgentResponse:
        policy = context.active_policy
        try:
            self._require_indexed(policy)
        except PreconditionFailure as e:
            logger.info("RAG query short-circuited: %s", e)
            return AgentResponse.ok(NOT_TRAINED_MESSAGE, grounded=False)
        if not (question or "").strip():
            return AgentResponse.fail("Question is required.", error="ValidationFailure")

        turns = [m for m in history if not m.is_synthetic]
        start = time.perf_counter()
        with self._job():
            try:
                answer = await self.gateway.query(turns, question, policy)
            except Exception as e:
                logger.exception("RAG query failed for policy %s", policy.id)
                return AgentResponse.fail(RAG_FAILED, **_error_meta(e))
        return AgentResponse.ok(
            answer,
            model=self.gateway.reasoning_model,
            latency_ms=_elapsed_ms(start),
            grounded=True,
        )

    # ---------- Conversations ----------
    async def chat(self, policy: Policy, question: str, session_id: str = "chat-session") -> AgentResponse:
        """Send one turn of the policy conversation and persist both sides.

        The user turn is stored before the model is asked; if the process dies
        in between, only the answer is lost.
        """
        if not (question or "").strip():
            return AgentResponse.fail("Question is required.", error="ValidationFailure")
        try:
            prior = self.stores.chats.load_or_greet(policy)
            messages = prior + [ChatMessage(id=new_id(), role="user", text=question)]
            self.stores.chats.save(policy.id, messages)
        except Exception as e:
            logger.exception("Chat history unavailable for policy %s", policy.id)
            return AgentResponse.fail(RAG_FAILED, **_error_meta(e))

        resp = await self.query(prior, question, PolicyContext(session_id=session_id, active_policy=policy))
        text = resp.data if resp.success else CHAT_ERROR_TEXT
        messages.append(ChatMessage(id=new_id(), role="model", text=text))
        try:
            self.stores.chats.save(policy.id, messages)
        except Exception as e:
            logger.exception("Persisting chat turn failed for policy %s", policy.id)
            return AgentResponse.fail(RAG_FAILED, **_error_meta(e))
        return AgentResponse(success=resp.success, data=messages, message=resp.message, metadata=resp.metadata)

    def _policy_or_none(self, policy_id: str) -> Optional[Policy]:
        try:
            return self.stores.metadata.get(policy_id)
        except Exception:
            logger.exception("Policy lookup failed for %s", policy_id)
            return None

    async def chat_history(self, policy_id: str) -> AgentResponse:
        try:
            messages = self.stores.chats.load(policy_id)
        except Exception as e:
            logger.exception("Loading chat history failed for policy %s", policy_id)
            return AgentResponse.fail(CHAT_HISTORY_FAILED, **_error_meta(e))
        return AgentResponse.ok(messages or [greeting_for(self._policy_or_none(policy_id))])

    async def clear_chat(self, policy_id: str) -> AgentResponse:
        try:
            self.stores.chats.clear(policy_id)
        except Exception as e:
            logger.exception("Clearing chat history failed for policy %s", policy_id)
            return AgentResponse.fail(CHAT_HISTORY_FAILED, **_error_meta(e))
        return AgentResponse.ok([greeting_for(self._policy_or_none(policy_id))])

    # ---------- Monitoring & reporting ----------
    def health(self) -> AgentResponse:
        return AgentResponse.ok(self.monitor.get_health())

    async def audit_history(self) -> AgentResponse:
        try:
            rows = self.stores.analytics.query()
        except Exception as e:
            logger.exception("Reading audit history failed")
            return AgentResponse.fail(HISTORY_FAILED, **_error_meta(e))
        return AgentResponse.ok(rows)

    async def trigger_batch_job(self) -> AgentResponse:
        """Nightly risk evaluation: aggregate analysis rows into a risk trend."""
        logger.info("Triggering 'Nightly_Risk_Eval_Job'")
        with self._job():
            try:
                self.stores.events.log_event("Batch Job Started")
                rows = self.stores.analytics.query()
                trend = {level.value: 0 for level in RiskLevel}
                for r in rows:
                    trend[r.overall_risk.value] += 1
                avg = round(sum(r.score for r in rows) / len(rows), 2) if rows else None
                highest = max((r.overall_risk for r in rows), default=None)
                self.stores.events.log_event("Batch Job Complete")
            except Exception as e:
                logger.exception("Batch job failed")
                return AgentResponse.fail(BATCH_FAILED, **_error_meta(e))
        return AgentResponse.ok(
            {
                "rows": len(rows),
                "risk_trend": trend,
                "average_score": avg,
                "highest_risk": highest.value if highest else None,
            }
        )
