"""ADK-style orchestration for the compliance console.

This package wires the storage facades, the Gemini gateway and the
orchestrator that the HTTP layer drives: policy ingestion and verification,
evidence analysis, per-policy RAG training and grounded chat.
"""
