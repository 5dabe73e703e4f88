import pytest

from compliance_adk.errors import ModelOutputError, RemoteCallError
from compliance_adk.llm.schemas import AnalysisPayload, Decoded, ViolationPayload
from compliance_adk.models import ChatMessage, Evidence, Policy, PolicyContext, RiskLevel
from compliance_adk.orchestrator import (
    ANALYZE_FAILED,
    CHAT_ERROR_TEXT,
    INGEST_FAILED,
    NO_POLICY,
    NOT_TRAINED_MESSAGE,
    RAG_FAILED,
    SAVE_FAILED,
    TRAIN_FAILED,
    suggest_questions,
)
from compliance_adk.storage.chat_history import NO_POLICY_TEXT


def _ctx(policy=None):
    return PolicyContext(session_id="s1", active_policy=policy)


def _policy(**kw):
    base = dict(id="p1", title="T", content="Wear a hard hat.", rules=["Wear a hard hat."])
    base.update(kw)
    return Policy(**base)


# ---------- Ingestion ----------

@pytest.mark.asyncio
async def test_ingest_plain_text(orch, gateway, stores):
    resp = await orch.ingest(b"Wear a hard hat.", "text/plain", "handbook.txt")
    assert resp.success
    assert resp.data["text"] == "Wear a hard hat."
    assert resp.data["rules"] == ["Wear a hard hat."]
    assert resp.data["uri"].endswith("policies/handbook.txt")
    assert "policy" not in resp.data
    assert gateway.calls[0] == ("ingest_document", b"Wear a hard hat.", "text/plain")
    assert stores.events.recent() == ["Ingest Policy: handbook.txt"]
    # nothing is saved as a policy during ingestion
    assert stores.metadata.get_all() == []


@pytest.mark.asyncio
async def test_ingest_stores_upload_under_its_base_name(orch, stores):
    await orch.save(Policy(id="p1", title="T"))
    resp = await orch.ingest(b"Wear a hard hat.", "text/plain", "../../kv/policies.json")
    assert resp.success
    assert resp.data["uri"].endswith("objects/policies/policies.json")
    # the policy library is untouched
    assert [p.id for p in (await orch.list_policies()).data] == ["p1"]
    assert stores.events.recent(limit=1) == ["Ingest Policy: ../../kv/policies.json"]


@pytest.mark.asyncio
async def test_ingest_without_usable_filename_falls_back(orch):
    resp = await orch.ingest(b"Wear a hard hat.", "text/plain", "..")
    assert resp.success
    assert resp.data["uri"].endswith("policies/upload.bin")


@pytest.mark.asyncio
async def test_reingest_resets_indexed_flag(orch):
    existing = _policy(content="old", rules=["old rule"], is_indexed=True)
    resp = await orch.ingest(b"Wear a hard hat.", "text/plain", "v2.txt", policy=existing)
    updated = resp.data["policy"]
    assert updated.content == "Wear a hard hat."
    assert updated.rules == ["Wear a hard hat."]
    assert updated.is_indexed is False
    assert existing.is_indexed is True


@pytest.mark.asyncio
async def test_ingest_decode_failure_reports_kind(orch, gateway):
    gateway.error = ModelOutputError(ModelOutputError.SCHEMA_MISMATCH)
    resp = await orch.ingest(b"x", "application/pdf", "bad.pdf")
    assert not resp.success
    assert resp.message == INGEST_FAILED
    assert resp.metadata["error_kind"] == "schema_mismatch"


@pytest.mark.asyncio
async def test_ingest_empty_document_rejected(orch, gateway, stores):
    resp = await orch.ingest(b"", "text/plain", "empty.txt")
    assert not resp.success
    assert gateway.calls == []
    assert stores.objects.count() == 0


@pytest.mark.asyncio
async def test_verify_and_extract_rules(orch, gateway):
    resp = await orch.verify("Hard hats optional.")
    assert resp.success
    assert resp.data.sources[0].title == "OSHA 1910.135"

    resp = await orch.extract_rules("Wear a hard hat.")
    assert resp.data == ["Wear a hard hat."]

    resp = await orch.verify("   ")
    assert not resp.success
    assert len(gateway.calls) == 2


# ---------- Policy library ----------

@pytest.mark.asyncio
async def test_save_then_list(orch, stores):
    resp = await orch.save(Policy(id="p1", title="T"))
    assert resp.success and resp.data is True
    listed = await orch.list_policies()
    assert [(p.id, p.title) for p in listed.data] == [("p1", "T")]
    assert "Update Policy: p1" in stores.events.recent()


@pytest.mark.asyncio
async def test_save_rejects_missing_title(orch, stores):
    resp = await orch.save(Policy(id="p1", title=" "))
    assert not resp.success
    assert resp.metadata["error"] == "ValidationFailure"
    assert stores.metadata.count() == 0
    assert stores.events.count() == 0


@pytest.mark.asyncio
async def test_save_failure_is_reported(orch, stores, monkeypatch):
    def boom(policy):
        raise OSError("disk full")

    monkeypatch.setattr(stores.metadata, "save", boom)
    resp = await orch.save(Policy(id="p1", title="T"))
    assert not resp.success
    assert resp.message == SAVE_FAILED
    assert resp.metadata["error"] == "OSError"


@pytest.mark.asyncio
async def test_archive_unknown_id_succeeds(orch, stores):
    await orch.save(Policy(id="p1", title="T"))
    resp = await orch.archive("does-not-exist")
    assert resp.success
    assert stores.metadata.count() == 1
    assert "Delete Policy: does-not-exist" in stores.events.recent()


@pytest.mark.asyncio
async def test_get_policy(orch):
    await orch.save(Policy(id="p1", title="T"))
    assert (await orch.get_policy("p1")).data.title == "T"
    assert not (await orch.get_policy("p9")).success


@pytest.mark.asyncio
async def test_load_defaults_seeds_indexed_library(orch, stores):
    resp = await orch.load_defaults()
    assert resp.success and resp.data == 8
    policies = (await orch.list_policies()).data
    assert len(policies) == 8
    assert all(p.is_indexed for p in policies)
    assert {p.id for p in policies} >= {"pol-mfg-001", "pol-energy-008"}
    assert stores.vectors.count() == 8


@pytest.mark.asyncio
async def test_load_defaults_twice_does_not_inflate_vector_count(orch, stores):
    await orch.load_defaults()
    await orch.load_defaults()
    assert stores.vectors.count() == 8
    assert orch.health().data.storage_usage.vector_entries == 8


# ---------- Evidence analysis ----------

@pytest.mark.asyncio
async def test_analyze_without_policy_touches_nothing(orch, gateway, stores):
    resp = await orch.analyze(_ctx(), Evidence(type="log", data="temp=9C"))
    assert not resp.success
    assert resp.message == NO_POLICY
    assert gateway.calls == []
    assert stores.objects.count() == 0
    assert stores.analytics.count() == 0


@pytest.mark.asyncio
async def test_analyze_log_records_result(orch, gateway, stores):
    gateway.analysis = Decoded(
        value=AnalysisPayload(
            overall_risk=RiskLevel.HIGH,
            score=40,
            summary="Missing helmet entries.",
            violations=[ViolationPayload(description="No hard hat", severity=RiskLevel.HIGH, recommendation="Issue PPE")],
        )
    )
    resp = await orch.analyze(_ctx(_policy()), Evidence(type="log", data="worker 7 no helmet"))
    assert resp.success
    result = resp.data
    assert result.overall_risk is RiskLevel.HIGH
    assert result.score == 40
    assert result.evidence_name == "Log/Text Evidence"
    assert result.violations[0].description == "No hard hat"
    assert resp.metadata["policy_id"] == "p1"
    assert "decode_error" not in resp.metadata
    assert gateway.calls[0][1] == ["Wear a hard hat."]

    history = (await orch.audit_history()).data
    assert [r.id for r in history] == [result.id]
    assert stores.objects.count() == 1


@pytest.mark.asyncio
async def test_analyze_keeps_evidence_inside_object_store(orch, stores, settings):
    ev = Evidence(type="log", data="temp=9C", filename="../../escaped.txt")
    resp = await orch.analyze(_ctx(_policy()), ev)
    assert resp.success
    assert resp.data.evidence_name == "../../escaped.txt"
    assert not (settings.data_dir / "escaped.txt").exists()
    assert (settings.objects_dir / "evidence" / "escaped.txt").exists()
    assert stores.objects.count() == 1


@pytest.mark.asyncio
async def test_analyze_history_is_newest_first(orch):
    first = (await orch.analyze(_ctx(_policy()), Evidence(type="log", data="a", filename="a.log"))).data
    second = (await orch.analyze(_ctx(_policy()), Evidence(type="log", data="b", filename="b.log"))).data
    history = (await orch.audit_history()).data
    assert [r.id for r in history] == [second.id, first.id]
    assert history[0].evidence_name == "b.log"


@pytest.mark.asyncio
async def test_analyze_malformed_payload_uses_defaults(orch, gateway):
    gateway.analysis = Decoded(value=AnalysisPayload(), error=ModelOutputError(ModelOutputError.MALFORMED_JSON))
    resp = await orch.analyze(_ctx(_policy()), Evidence(type="image", data=b"\xff\xd8", filename="site.jpg"))
    assert resp.success
    assert resp.data.overall_risk is RiskLevel.LOW
    assert resp.data.score == 100
    assert resp.data.violations == ()
    assert resp.metadata["decode_error"] == "malformed_json"


@pytest.mark.asyncio
async def test_analyze_remote_failure(orch, gateway, stores):
    gateway.error = RemoteCallError("analyze", TimeoutError())
    resp = await orch.analyze(_ctx(_policy()), Evidence(type="log", data="x"))
    assert not resp.success
    assert resp.message == ANALYZE_FAILED
    assert resp.metadata["error"] == "RemoteCallError"
    assert stores.analytics.count() == 0


# ---------- Training & query ----------

@pytest.mark.asyncio
async def test_train_marks_policy_indexed(orch, stores):
    await orch.save(_policy())
    resp = await orch.train(_policy())
    assert resp.success
    assert resp.data.is_indexed
    assert resp.message == "Policy indexed into vector store."
    assert stores.metadata.get("p1").is_indexed
    assert stores.vectors.count() == 1


@pytest.mark.asyncio
async def test_train_rolls_back_vector_entry_when_metadata_fails(orch, stores, monkeypatch):
    def boom(policy):
        raise OSError("commit failed")

    monkeypatch.setattr(stores.metadata, "save", boom)
    resp = await orch.train(_policy())
    assert not resp.success
    assert resp.message == TRAIN_FAILED
    assert not stores.vectors.is_indexed("p1")
    assert stores.vectors.count() == 0


@pytest.mark.asyncio
async def test_train_keeps_prior_index_when_metadata_fails(orch, stores, monkeypatch):
    stores.vectors.index_policy("p1", "old")

    def boom(policy):
        raise OSError("commit failed")

    monkeypatch.setattr(stores.metadata, "save", boom)
    resp = await orch.train(_policy())
    assert not resp.success
    assert stores.vectors.is_indexed("p1")


@pytest.mark.asyncio
async def test_query_untrained_policy_skips_model(orch, gateway):
    resp = await orch.query([], "Do I need a hard hat?", _ctx(_policy(is_indexed=False)))
    assert resp.success
    assert resp.data == NOT_TRAINED_MESSAGE
    assert resp.metadata["grounded"] is False
    assert gateway.calls == []

    resp = await orch.query([], "Anything?", _ctx(None))
    assert resp.data == NOT_TRAINED_MESSAGE


@pytest.mark.asyncio
async def test_query_after_train_is_grounded(orch, gateway):
    await orch.save(_policy())
    trained = await orch.train(_policy())
    assert trained.success
    resp = await orch.query([], "Zone A?", _ctx(trained.data))
    assert resp.success
    assert resp.data == gateway.answer
    assert resp.data != NOT_TRAINED_MESSAGE
    assert resp.metadata["grounded"] is True
    assert gateway.calls[-1][0] == "query"


@pytest.mark.asyncio
async def test_query_drops_greeting_turns(orch, gateway):
    history = [
        ChatMessage(id="init", role="model", text="Hello! I am your assistant"),
        ChatMessage(id="u1", role="user", text="Hi"),
        ChatMessage(id="m1", role="model", text="Hello"),
    ]
    resp = await orch.query(history, "Zone A?", _ctx(_policy(is_indexed=True)))
    assert resp.success
    assert resp.data == gateway.answer
    assert resp.metadata["grounded"] is True
    sent_history = gateway.calls[0][1]
    assert [m.id for m in sent_history] == ["u1", "m1"]


@pytest.mark.asyncio
async def test_query_failure(orch, gateway):
    gateway.error = RemoteCallError("query")
    resp = await orch.query([], "Zone A?", _ctx(_policy(is_indexed=True)))
    assert not resp.success
    assert resp.message == RAG_FAILED


# ---------- Conversations ----------

@pytest.mark.asyncio
async def test_chat_persists_both_turns(orch, stores):
    policy = _policy(is_indexed=True)
    resp = await orch.chat(policy, "Do I need a hard hat?")
    assert resp.success
    assert [m.role for m in resp.data] == ["model", "user", "model"]
    assert resp.data[0].id == "init"
    assert resp.data[-1].text == "Hard hats are required in Zone A."
    assert [m.text for m in stores.chats.load("p1")] == [m.text for m in resp.data]

    resp = await orch.chat(policy, "And boots?")
    assert len(resp.data) == 5


@pytest.mark.asyncio
async def test_chat_failure_appends_apology(orch, gateway, stores):
    gateway.error = RemoteCallError("query")
    resp = await orch.chat(_policy(is_indexed=True), "Hello?")
    assert not resp.success
    assert resp.data[-1].text == CHAT_ERROR_TEXT
    assert stores.chats.load("p1")[-1].text == CHAT_ERROR_TEXT


@pytest.mark.asyncio
async def test_chat_history_and_clear(orch):
    await orch.save(_policy())
    resp = await orch.chat_history("p1")
    assert resp.data[0].id == "init"

    resp = await orch.chat_history("unknown")
    assert resp.data[0].text == NO_POLICY_TEXT

    await orch.chat(_policy(is_indexed=True), "Hi")
    resp = await orch.clear_chat("p1")
    assert [m.id for m in resp.data] == ["init"]
    assert [m.id for m in (await orch.chat_history("p1")).data] == ["init"]


def test_suggest_questions_uses_rules():
    policy = _policy(rules=["Hard hats are mandatory.", "Steel-toed boots required.", "  "])
    qs = suggest_questions(policy, n=5)
    assert len(qs) == 2
    assert "What is the rule about Hard hats are?" in qs
    assert suggest_questions(_policy(rules=[])) == []


# ---------- Monitoring & batch ----------

@pytest.mark.asyncio
async def test_batch_job_aggregates_risk_trend(orch, gateway, stores):
    gateway.analysis = Decoded(value=AnalysisPayload(overall_risk=RiskLevel.CRITICAL, score=10))
    await orch.analyze(_ctx(_policy()), Evidence(type="log", data="a"))
    gateway.analysis = Decoded(value=AnalysisPayload(score=90))
    await orch.analyze(_ctx(_policy()), Evidence(type="log", data="b"))

    resp = await orch.trigger_batch_job()
    assert resp.success
    assert resp.data["rows"] == 2
    assert resp.data["risk_trend"] == {"LOW": 1, "MEDIUM": 0, "HIGH": 0, "CRITICAL": 1}
    assert resp.data["average_score"] == 50.0
    assert resp.data["highest_risk"] == "CRITICAL"
    assert stores.events.recent(limit=2) == ["Batch Job Complete", "Batch Job Started"]


@pytest.mark.asyncio
async def test_health_reflects_storage(orch):
    await orch.load_defaults()
    health = orch.health().data
    assert health.status == "healthy"
    assert health.active_jobs == 0
    assert health.storage_usage.metadata_rows == 8
    assert health.storage_usage.vector_entries == 8
    assert health.uptime_seconds >= 0
