from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import google.generativeai as genai

from compliance_adk.config import Settings, settings as default_settings
from compliance_adk.errors import ComplianceError, ModelOutputError, RemoteCallError
from compliance_adk.llm.schemas import (
    ANALYSIS_SCHEMA,
    INGESTION_SCHEMA,
    RULES_SCHEMA,
    AnalysisPayload,
    Decoded,
    IngestionPayload,
    decode,
    decode_rules,
    decode_strict,
)
from compliance_adk.logging_utils import log_interaction
from compliance_adk.models import ChatMessage, Evidence, Policy
from compliance_adk.prompts import templates

logger = logging.getLogger(__name__)

SAFETY_SETTINGS = {"HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_MEDIUM_AND_ABOVE"}


@dataclass
class IngestionResult:
    text: str
    rules: List[str]


@dataclass
class VerificationSource:
    title: str
    uri: str


@dataclass
class VerificationResult:
    summary: str
    sources: List[VerificationSource] = field(default_factory=list)


def _json_config(schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"response_mime_type": "application/json", "response_schema": schema}


class AIGateway:
    """Gemini-backed gateway for ingestion, verification, analysis and RAG chat.

    Structured calls declare a response schema and decode through
    ``compliance_adk.llm.schemas``. Transport, SDK and safety-block failures
    surface as ``RemoteCallError``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings

    @property
    def fast_model(self) -> str:
        return self.settings.gemini_model

    @property
    def reasoning_model(self) -> str:
        return self.settings.gemini_reasoning_model

    def _model(self, operation: str, model_name: str, **kwargs: Any):
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise RemoteCallError(operation, RuntimeError("GOOGLE_API_KEY / GEMINI_API_KEY not set"))
        genai.configure(api_key=api_key)
        return genai.GenerativeModel(model_name, **kwargs)

    def _log(
        self,
        operation: str,
        model: str,
        prompt: str,
        output: Optional[str],
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        log_interaction(operation, model, prompt, output, meta, log_path=self.settings.interactions_log_path)

    @property
    def _request_options(self) -> Dict[str, Any]:
        return {"timeout": self.settings.llm_timeout}

    async def _generate(self, operation: str, model_name: str, contents: Any, **model_kwargs: Any):
        try:
            model = self._model(operation, model_name, **model_kwargs)
            return await model.generate_content_async(contents, request_options=self._request_options)
        except ComplianceError:
            raise
        except Exception as e:
            raise RemoteCallError(operation, e) from e

    @staticmethod
    def _text(operation: str, response: Any) -> str:
        # .text raises ValueError when the candidate was blocked and has no parts
        try:
            return response.text or ""
        except ValueError as e:
            raise RemoteCallError(operation, e) from e

    # ---------- Document ingestion ----------
    async def ingest_document(self, data: bytes, mime_type: str) -> IngestionResult:
        if mime_type == "text/plain":
            text = data.decode("utf-8", errors="replace")
            parts: List[Any] = [templates.build_document_text_part(text)]
            prompt_repr = parts[0]
        else:
            parts = [{"mime_type": mime_type, "data": data}]
            prompt_repr = f"<inline {mime_type}, {len(data)} bytes>"
        parts.append(templates.INGESTION_INSTRUCTION)

        start = time.perf_counter()
        response = await self._generate(
            "ingest",
            self.fast_model,
            parts,
            generation_config=_json_config(INGESTION_SCHEMA),
            safety_settings=SAFETY_SETTINGS,
        )
        raw = self._text("ingest", response)
        meta: Dict[str, Any] = {"latency_ms": int((time.perf_counter() - start) * 1000), "mime_type": mime_type}
        try:
            payload = decode_strict(raw, IngestionPayload)
        except ModelOutputError as e:
            meta["error"] = e.kind
            self._log("ingest", self.fast_model, prompt_repr, raw, meta)
            raise
        self._log("ingest", self.fast_model, prompt_repr, raw, meta)
        return IngestionResult(text=payload.text_content or "No text extracted.", rules=list(payload.rules))

    async def extract_rules(self, policy_text: str) -> List[str]:
        prompt = templates.build_rule_extraction_prompt(policy_text)
        response = await self._generate(
            "extract_rules",
            self.fast_model,
            prompt,
            generation_config=_json_config(RULES_SCHEMA),
        )
        raw = self._text("extract_rules", response)
        self._log("extract_rules", self.fast_model, prompt, raw)
        return decode_rules(raw)

    # ---------- Web-grounded verification ----------
    async def verify_policy(self, policy_text: str) -> VerificationResult:
        # Search grounding cannot be combined with JSON mode, so this call is unstructured
        prompt = templates.build_verification_prompt(policy_text)
        response = await self._generate(
            "verify",
            self.fast_model,
            prompt,
            tools=self.settings.gemini_search_tool,
        )
        summary = self._text("verify", response) or "No verification insights found."
        sources = self._grounding_sources(response)
        self._log("verify", self.fast_model, prompt, summary, {"sources": len(sources)})
        return VerificationResult(summary=summary, sources=sources)

    @staticmethod
    def _grounding_sources(response: Any) -> List[VerificationSource]:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return []
        metadata = getattr(candidates[0], "grounding_metadata", None)
        chunks = getattr(metadata, "grounding_chunks", None) or []
        out: List[VerificationSource] = []
        for chunk in chunks:
            web = getattr(chunk, "web", None)
            if not web:
                continue
            out.append(VerificationSource(title=getattr(web, "title", "") or "", uri=getattr(web, "uri", "") or ""))
        return out

    # ---------- Evidence analysis ----------
    async def analyze_evidence(self, rules: List[str], evidence: Evidence) -> Decoded[AnalysisPayload]:
        prompt = templates.build_evidence_prompt(rules)
        parts: List[Any] = [prompt]
        if evidence.type == "image":
            parts.append({"mime_type": evidence.mime_type, "data": evidence.as_bytes()})
            parts.append(templates.EVIDENCE_IMAGE_INSTRUCTION)
        else:
            parts.append(templates.build_log_evidence_part(evidence.as_text()))

        start = time.perf_counter()
        response = await self._generate(
            "analyze",
            self.fast_model,
            parts,
            generation_config=_json_config(ANALYSIS_SCHEMA),
            safety_settings=SAFETY_SETTINGS,
        )
        raw = self._text("analyze", response)
        decoded = decode(raw, AnalysisPayload)
        meta: Dict[str, Any] = {
            "latency_ms": int((time.perf_counter() - start) * 1000),
            "evidence_type": evidence.type,
        }
        if decoded.error is not None:
            meta["error"] = decoded.error.kind
        self._log("analyze", self.fast_model, prompt, raw, meta)
        return decoded

    # ---------- Conversational RAG ----------
    async def query(self, history: List[ChatMessage], question: str, policy: Policy) -> str:
        system_instruction = templates.build_rag_system_instruction(policy)
        chat_history = [{"role": m.role, "parts": [m.text]} for m in history]
        try:
            model = self._model("query", self.reasoning_model, system_instruction=system_instruction)
            chat = model.start_chat(history=chat_history)
            response = await chat.send_message_async(question, request_options=self._request_options)
        except ComplianceError:
            raise
        except Exception as e:
            raise RemoteCallError("query", e) from e
        answer = self._text("query", response)
        self._log("query", self.reasoning_model, question, answer, {"policy_id": policy.id, "turns": len(history)})
        return answer
