"""Identity is owned by an external provider; the core only asks who is calling.

No orchestrator operation is gated on identity.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: str = "auditor"


class IdentityProvider(Protocol):
    def current_user(self) -> Optional[Identity]: ...


class StaticIdentityProvider:
    def __init__(self, identity: Optional[Identity] = None) -> None:
        self.identity = identity

    def current_user(self) -> Optional[Identity]:
        return self.identity


class HeaderIdentityProvider:
    """Reads an identity asserted by an upstream proxy via request headers."""

    def __init__(self, headers: Mapping[str, str]) -> None:
        self.headers = headers

    def current_user(self) -> Optional[Identity]:
        uid = (self.headers.get("x-user-id") or "").strip()
        if not uid:
            return None
        email = self.headers.get("x-user-email") or None
        return Identity(
            uid=uid,
            email=email,
            display_name=email.split("@")[0] if email else None,
            role=self.headers.get("x-user-role") or "auditor",
        )
