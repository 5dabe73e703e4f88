from __future__ import annotations

from typing import List

from compliance_adk.models import Policy

INGESTION_INSTRUCTION = (
    "You are a Policy Ingestion Agent. Read this document. "
    "1. Extract the full text content accurately. "
    "2. Extract a list of key compliance rules. Return as JSON."
)

EVIDENCE_IMAGE_INSTRUCTION = "Detect safety violations in this image based strictly on the rules above."


def build_document_text_part(text: str) -> str:
    return f"DOCUMENT CONTENT:\n{text}"


def build_rule_extraction_prompt(policy_text: str) -> str:
    return (
        "Extract the key compliance rules from the following policy text. "
        "Return them as a JSON list of strings.\n\n"
        f"Policy Text:\n{policy_text}"
    )


def build_verification_prompt(policy_text: str) -> str:
    return (
        "Verify this policy content against current regulations (like OSHA, HIPAA, GDPR, etc.) "
        "and general industry standards.\n"
        "Point out outdated rules or suggest missing compliance requirements.\n\n"
        f"Policy Content:\n{policy_text}"
    )


def build_evidence_prompt(rules: List[str]) -> str:
    lines: List[str] = []
    lines.append("Role: Compliance Officer Agent.")
    lines.append("Task: Analyze evidence against policy rules.")
    lines.append("")
    lines.append("Policy Rules:")
    for i, r in enumerate(rules, start=1):
        lines.append(f"{i}. {r}")
    return "\n".join(lines) + "\n"


def build_log_evidence_part(log_text: str) -> str:
    return (
        f"Analyze the following LOG DATA for violations:\n\n{log_text}\n\n"
        "Check dates, values, and procedures against the rules."
    )


def build_rag_system_instruction(policy: Policy) -> str:
    """System instruction that pins chat answers to one policy's content."""
    rules = "\n".join(policy.rules)
    return (
        "You are a specialized Compliance RAG Agent.\n"
        "Use the provided Model Context Protocol (MCP) data to answer the user's question.\n"
        f'MCP Context - Active Policy: "{policy.title}"\n'
        f"Industry: {policy.industry or 'General'}\n"
        f"Content: {policy.content}\n"
        f"Rules: {rules}\n"
        "Answer strictly based on the context. "
        "If the answer is not in the policy, state that clearly."
    )
