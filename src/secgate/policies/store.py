"""
Storage backends for policies and audit events.

The in-memory backends keep process-local state for development, the CLI
and tests. Durable SQL backends live in secgate.policies.repository.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Protocol

from secgate.policies.audit import PolicyAuditEvent
from secgate.policies.models import Policy, utcnow


class PolicyStore(Protocol):
    async def list_all(self) -> list[Policy]: ...

    async def get(self, policy_id: str) -> Policy | None: ...

    async def put(self, policy: Policy) -> None: ...

    async def delete(self, policy_id: str) -> bool: ...


class AuditStore(Protocol):
    async def record_event(self, event: PolicyAuditEvent) -> None: ...

    async def get_events(self, repository_id: str, hours: int = 24) -> list[PolicyAuditEvent]: ...


class InMemoryPolicyStore:
    """Dict-backed policy store; iteration follows insertion order."""

    def __init__(self, policies: Iterable[Policy] = ()) -> None:
        self._policies: dict[str, Policy] = {policy.id: policy for policy in policies}

    async def list_all(self) -> list[Policy]:
        return list(self._policies.values())

    async def get(self, policy_id: str) -> Policy | None:
        return self._policies.get(policy_id)

    async def put(self, policy: Policy) -> None:
        self._policies[policy.id] = policy

    async def delete(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None


class InMemoryAuditStore:
    """Append-only list of audit events."""

    def __init__(self) -> None:
        self._events: list[PolicyAuditEvent] = []

    async def record_event(self, event: PolicyAuditEvent) -> None:
        self._events.append(event)

    async def get_events(self, repository_id: str, hours: int = 24) -> list[PolicyAuditEvent]:
        cutoff: datetime = utcnow() - timedelta(hours=hours)
        events = [
            e for e in self._events if e.repository_id == repository_id and e.timestamp >= cutoff
        ]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)
