"""
SQL-backed policy and audit repositories.

Policies are stored as one structured record per policy id. Audit tables
are insert-only (no update/delete).
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Mapping

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from secgate.core.errors import ValidationError
from secgate.db.models import PolicyAuditEventModel, SecurityPolicyModel
from secgate.policies.audit import AuditAction, PolicyAuditEvent
from secgate.policies.models import Policy, Rule, ensure_utc, utcnow

logger = structlog.get_logger()


def policy_from_record(record: Mapping[str, Any]) -> Policy:
    """
    Rebuild a policy from its stored record.

    Rules that no longer compile are dropped with a configuration warning
    instead of making the whole policy unreadable.
    """
    rules: list[Rule] = []
    for raw in record.get("rules") or ():
        try:
            rules.append(Rule.from_dict(raw))
        except ValidationError as exc:
            logger.warning(
                "rule_not_applicable",
                policy_id=record.get("id"),
                rule_id=raw.get("id"),
                reason=exc.message,
            )
    return Policy.from_dict({**record, "rules": rules})


class SQLPolicyStore:
    """Durable policy store keyed by policy id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def list_all(self) -> list[Policy]:
        """Read every policy in one query so evaluation sees a single point in time."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SecurityPolicyModel).order_by(
                    SecurityPolicyModel.position, SecurityPolicyModel.created_at
                )
            )
            return [policy_from_record(m.record) for m in result.scalars().all()]

    async def get(self, policy_id: str) -> Policy | None:
        async with self.session_factory() as session:
            model = await session.get(SecurityPolicyModel, policy_id)
            if model is None:
                return None
            return policy_from_record(model.record)

    async def put(self, policy: Policy) -> None:
        async with self.session_factory() as session:
            model = await session.get(SecurityPolicyModel, policy.id)
            if model is None:
                position = await session.scalar(
                    select(func.coalesce(func.max(SecurityPolicyModel.position), -1))
                )
                model = SecurityPolicyModel(
                    id=policy.id,
                    position=int(position if position is not None else -1) + 1,
                    created_at=policy.created_at,
                )
                session.add(model)

            model.name = policy.name
            model.category = policy.category.value
            model.enabled = policy.enabled
            model.record = policy.to_dict()
            model.updated_at = policy.updated_at
            await session.commit()

    async def delete(self, policy_id: str) -> bool:
        async with self.session_factory() as session:
            model = await session.get(SecurityPolicyModel, policy_id)
            if model is None:
                return False
            await session.delete(model)
            await session.commit()
            return True


class PolicyAuditRepository:
    """Repository for policy audit database operations."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record_event(self, event: PolicyAuditEvent) -> None:
        """Insert a policy audit event."""
        async with self.session_factory() as session:
            session.add(
                PolicyAuditEventModel(
                    id=event.id,
                    timestamp=event.timestamp,
                    repository_id=event.repository_id,
                    commit_sha=event.commit_sha,
                    action=event.action.value,
                    actor=event.actor,
                    result=event.result,
                    reason=event.reason,
                    extra_data=event.extra_data,
                )
            )
            await session.commit()

    async def get_events(self, repository_id: str, hours: int = 24) -> list[PolicyAuditEvent]:
        """Get recent audit events for a repository, newest first."""
        cutoff = utcnow() - timedelta(hours=hours)
        async with self.session_factory() as session:
            result = await session.execute(
                select(PolicyAuditEventModel)
                .where(
                    PolicyAuditEventModel.repository_id == repository_id,
                    PolicyAuditEventModel.timestamp >= cutoff,
                )
                .order_by(PolicyAuditEventModel.timestamp.desc())
            )
            return [self._event_to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _event_to_domain(model: PolicyAuditEventModel) -> PolicyAuditEvent:
        return PolicyAuditEvent(
            id=model.id,
            timestamp=ensure_utc(model.timestamp),
            repository_id=model.repository_id,
            commit_sha=model.commit_sha,
            action=AuditAction(model.action),
            actor=model.actor,
            result=model.result,
            reason=model.reason,
            extra_data=model.extra_data or {},
        )
