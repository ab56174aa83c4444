"""
Policy audit domain models.

Immutable records of gate evaluations, approvals, rejections and bypasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class AuditAction(StrEnum):
    EVALUATE = "evaluate"
    APPROVE = "approve"
    REJECT = "reject"
    BYPASS = "bypass"


@dataclass
class PolicyAuditEvent:
    """Record of one gate evaluation or decision."""

    id: str
    timestamp: datetime
    repository_id: str
    commit_sha: str | None
    action: AuditAction
    actor: str | None
    result: str  # gate status after the action
    reason: str | None = None
    extra_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "repository_id": self.repository_id,
            "commit_sha": self.commit_sha,
            "action": self.action.value,
            "actor": self.actor,
            "result": self.result,
            "reason": self.reason,
            "extra_data": self.extra_data,
        }
