"""
Policy audit recorder.

Orchestrates audit logging for gate evaluations and decisions. Store
operations are wrapped in try/except for fail-open behavior: audit errors
are logged via structlog but never fail a gate evaluation or decision.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from secgate.policies.audit import AuditAction, PolicyAuditEvent
from secgate.policies.models import CheckStatus, utcnow

if TYPE_CHECKING:
    from secgate.policies.models import DeploymentGate
    from secgate.policies.store import AuditStore

logger = structlog.get_logger()


class PolicyAuditRecorder:
    """Records policy audit events with fail-open semantics."""

    def __init__(self, store: AuditStore) -> None:
        self.store = store

    async def record_gate_evaluation(
        self,
        gate: DeploymentGate,
        actor: str | None = None,
    ) -> PolicyAuditEvent | None:
        """Record the creation of a deployment gate. Returns None on store error."""
        return await self._record(
            gate,
            action=AuditAction.EVALUATE,
            actor=actor,
            reason=None,
            extra_data={
                "active_violations": len(gate.active_violations),
                "total_violations": len(gate.violations),
                "failed_policies": [
                    check.policy_id
                    for check in gate.gate_checks
                    if check.status != CheckStatus.PASS
                ],
            },
        )

    async def record_decision(
        self,
        gate: DeploymentGate,
        action: AuditAction,
        actor: str,
        reason: str,
    ) -> PolicyAuditEvent | None:
        """Record an approval, rejection or bypass. Returns None on store error."""
        return await self._record(gate, action=action, actor=actor, reason=reason, extra_data={})

    async def _record(
        self,
        gate: DeploymentGate,
        *,
        action: AuditAction,
        actor: str | None,
        reason: str | None,
        extra_data: dict,
    ) -> PolicyAuditEvent | None:
        try:
            event = PolicyAuditEvent(
                id=str(uuid.uuid4()),
                timestamp=utcnow(),
                repository_id=gate.repository_id,
                commit_sha=gate.commit_sha,
                action=action,
                actor=actor,
                result=gate.status.value,
                reason=reason,
                extra_data=extra_data,
            )
            await self.store.record_event(event)

            logger.info(
                "policy_audit_recorded",
                event_id=event.id,
                repository_id=gate.repository_id,
                commit_sha=gate.commit_sha,
                action=action.value,
                result=event.result,
            )
            return event

        except Exception:
            logger.warning(
                "policy_audit_record_failed",
                repository_id=gate.repository_id,
                commit_sha=gate.commit_sha,
                action=action.value,
                exc_info=True,
            )
            return None
