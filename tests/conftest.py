import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest

# Ensure project root is on sys.path so 'api' and 'compliance_adk' can be imported in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from compliance_adk.config import Settings  # noqa: E402
from compliance_adk.llm.gateway import IngestionResult, VerificationResult, VerificationSource  # noqa: E402
from compliance_adk.llm.schemas import AnalysisPayload, Decoded  # noqa: E402
from compliance_adk.orchestrator import Orchestrator  # noqa: E402
from compliance_adk.storage import build_stores  # noqa: E402


class FakeGateway:
    """In-memory stand-in for AIGateway; records every call it receives."""

    fast_model = "fake-flash"
    reasoning_model = "fake-pro"

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None
        self.ingest_result = IngestionResult(text="Wear a hard hat.", rules=["Wear a hard hat."])
        self.rules = ["Wear a hard hat."]
        self.verification = VerificationResult(
            summary="Policy is current.",
            sources=[VerificationSource(title="OSHA 1910.135", uri="https://www.osha.gov/")],
        )
        self.analysis: Decoded = Decoded(value=AnalysisPayload())
        self.answer = "Hard hats are required in Zone A."

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name,) + args)
        if self.error is not None:
            raise self.error

    async def ingest_document(self, data, mime_type):
        self._record("ingest_document", data, mime_type)
        return self.ingest_result

    async def extract_rules(self, text):
        self._record("extract_rules", text)
        return list(self.rules)

    async def verify_policy(self, text):
        self._record("verify_policy", text)
        return self.verification

    async def analyze_evidence(self, rules, evidence):
        self._record("analyze_evidence", list(rules), evidence)
        return self.analysis

    async def query(self, history, question, policy):
        self._record("query", list(history), question, policy)
        return self.answer


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        storage_backend="local",
        event_log_url=None,
        gemini_api_key="test-key",
        seed_defaults=False,
    )


@pytest.fixture
def stores(settings):
    bundle = build_stores(settings)
    bundle.open()
    yield bundle
    bundle.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def orch(stores, gateway, settings) -> Orchestrator:
    return Orchestrator(stores=stores, gateway=gateway, settings=settings)
