from __future__ import annotations

from typing import List, Optional

from compliance_adk.models import ChatMessage, Policy
from compliance_adk.storage.kv import LocalKeyValueStore

KEY_PREFIX = "chat_history_"

NO_POLICY_TEXT = "Select a policy from the library to start asking questions about it."


def greeting_for(policy: Optional[Policy]) -> ChatMessage:
    if policy is None:
        return ChatMessage(id="no-policy", role="model", text=NO_POLICY_TEXT)
    return ChatMessage(
        id="init",
        role="model",
        text=(
            f'Hello! I am your RAG-powered Policy Assistant for "{policy.title}".\n\n'
            "I can help you understand compliance requirements, check specific rules, "
            "or clarify procedures. What would you like to know?"
        ),
    )


class ChatHistoryStore:
    """Per-policy conversation history keyed by policy id."""

    def __init__(self, kv: LocalKeyValueStore) -> None:
        self.kv = kv

    def open(self) -> None:
        self.kv.open()

    def close(self) -> None:
        self.kv.close()

    def load(self, policy_id: str) -> List[ChatMessage]:
        try:
            rows = self.kv.get(KEY_PREFIX + policy_id)
        except ValueError:
            # unreadable history starts over with a greeting
            return []
        if not isinstance(rows, list):
            return []
        return [ChatMessage.from_dict(r) for r in rows]

    def save(self, policy_id: str, messages: List[ChatMessage]) -> None:
        self.kv.set(KEY_PREFIX + policy_id, [m.to_dict() for m in messages])

    def clear(self, policy_id: str) -> None:
        self.kv.remove(KEY_PREFIX + policy_id)

    def load_or_greet(self, policy: Policy) -> List[ChatMessage]:
        return self.load(policy.id) or [greeting_for(policy)]
