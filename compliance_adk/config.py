from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    # Project paths
    root: Path = Path(__file__).resolve().parents[1]
    data_dir: Path = Path(os.getenv("COMPLIANCE_DATA_DIR", str(Path(__file__).resolve().parents[1] / "data")))

    # Storage backends: local (files + sqlite) or gcp (GCS + Firestore)
    storage_backend: str = os.getenv("STORAGE_BACKEND", "local")
    event_log_url: str | None = os.getenv("EVENT_LOG_URL")

    # GCP
    gcp_project: str | None = os.getenv("GCP_PROJECT")
    gcs_bucket: str = os.getenv("GCS_BUCKET", "compliance-bucket")
    firestore_project: str | None = os.getenv("FIRESTORE_PROJECT") or os.getenv("GCP_PROJECT")
    firestore_collection: str = os.getenv("FIRESTORE_COLLECTION", "policies")

    # Gemini
    gemini_api_key: str | None = field(
        default_factory=lambda: os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
    )
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    gemini_reasoning_model: str = os.getenv("GEMINI_REASONING_MODEL", "gemini-1.5-pro")
    gemini_search_tool: str = os.getenv("GEMINI_SEARCH_TOOL", "google_search_retrieval")
    llm_timeout: float = float(os.getenv("LLM_TIMEOUT", "120"))

    # Features
    seed_defaults: bool = _flag("SEED_DEFAULTS")
    # Identity used by /auth/me when no proxy headers are present (local development)
    dev_user_id: str | None = os.getenv("DEV_USER_ID")
    dev_user_email: str | None = os.getenv("DEV_USER_EMAIL")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def kv_dir(self) -> Path:
        return self.data_dir / "kv"

    @property
    def objects_dir(self) -> Path:
        return self.data_dir / "objects"

    @property
    def analytics_path(self) -> Path:
        return self.data_dir / "analytics" / "compliance_logs.jsonl"

    @property
    def interactions_log_path(self) -> Path:
        return self.data_dir / "logs" / "interactions.jsonl"

    @property
    def resolved_event_log_url(self) -> str:
        return self.event_log_url or f"sqlite:///{self.data_dir / 'events.db'}"


settings = Settings()
