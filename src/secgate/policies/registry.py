"""
Policy registry.

Sole owner and writer of security policies and their exemptions. Writes are
serialized per policy id; evaluations read an immutable snapshot so a
policy edited mid-evaluation never produces a half-updated result.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, AsyncIterator, Mapping

import structlog

from secgate.core.errors import NotFoundError, ValidationError
from secgate.policies.defaults import default_policies
from secgate.policies.models import (
    UPDATABLE_POLICY_FIELDS,
    Exemption,
    Policy,
    PolicyCategory,
    new_exemption_id,
    parse_datetime,
    utcnow,
)
from secgate.policies.rules import KNOWN_CONDITIONS
from secgate.policies.store import InMemoryPolicyStore, PolicyStore

logger = structlog.get_logger()


class PolicyRegistry:
    """CRUD over security policies and exemptions."""

    def __init__(self, store: PolicyStore | None = None) -> None:
        self.store: PolicyStore = store or InMemoryPolicyStore(default_policies())
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @asynccontextmanager
    async def _lock(self, policy_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(policy_id, asyncio.Lock())
        self._lock_users[policy_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[policy_id] -= 1
            if not self._lock_users[policy_id]:
                del self._lock_users[policy_id]
                del self._locks[policy_id]

    async def seed_defaults(self) -> list[Policy]:
        """Insert built-in policies missing from the store. Returns those inserted."""
        inserted = []
        for policy in default_policies():
            async with self._lock(policy.id):
                if await self.store.get(policy.id) is None:
                    await self.store.put(policy)
                    inserted.append(policy)
        if inserted:
            logger.info("default_policies_seeded", policy_ids=[p.id for p in inserted])
        return inserted

    # -- Reads --

    async def snapshot(self) -> tuple[Policy, ...]:
        """Point-in-time, immutable view of every policy in registry order."""
        return tuple(await self.store.list_all())

    async def list_policies(
        self,
        enabled: bool | None = None,
        category: PolicyCategory | str | None = None,
    ) -> list[Policy]:
        """List policies, including disabled ones unless filtered."""
        policies = list(await self.snapshot())
        if enabled is not None:
            policies = [p for p in policies if p.enabled is enabled]
        if category is not None:
            wanted = str(category).upper()
            policies = [p for p in policies if p.category.value == wanted]
        return policies

    async def get_policy(self, policy_id: str) -> Policy | None:
        return await self.store.get(policy_id)

    async def require_policy(self, policy_id: str) -> Policy:
        policy = await self.store.get(policy_id)
        if policy is None:
            raise NotFoundError(f"Policy {policy_id} not found", {"policy_id": policy_id})
        return policy

    # -- Writes --

    async def create_policy(self, data: Mapping[str, Any]) -> Policy:
        """
        Create a custom policy.

        Omitted fields fall back to safe defaults: MEDIUM severity, enabled,
        WARN enforcement with no channels, no exemptions. A fresh id is
        generated when none is supplied.

        Raises:
            ValidationError: If the id is taken or the payload is invalid
        """
        policy_id = str(data.get("id") or f"custom_{uuid.uuid4().hex[:12]}")
        now = utcnow()

        async with self._lock(policy_id):
            if await self.store.get(policy_id) is not None:
                raise ValidationError(
                    f"Policy {policy_id} already exists", {"policy_id": policy_id}
                )

            policy = Policy.from_dict(
                {**data, "id": policy_id, "created_at": now, "updated_at": now}
            )
            self._warn_unknown_conditions(policy)
            await self.store.put(policy)

        logger.info("policy_created", policy_id=policy.id, category=policy.category.value)
        return policy

    async def update_policy(self, policy_id: str, changes: Mapping[str, Any]) -> Policy | None:
        """
        Shallow-merge `changes` over an existing policy and bump updated_at.

        Returns None when the policy does not exist.

        Raises:
            ValidationError: If `changes` names a field that cannot be updated
        """
        unknown = set(changes) - UPDATABLE_POLICY_FIELDS - {"id"}
        if unknown:
            raise ValidationError(
                "Unknown policy fields", {"fields": ", ".join(sorted(unknown))}
            )

        async with self._lock(policy_id):
            current = await self.store.get(policy_id)
            if current is None:
                return None

            merged = {
                **current.to_dict(),
                **{k: v for k, v in changes.items() if k in UPDATABLE_POLICY_FIELDS},
                "id": current.id,
                "created_at": current.created_at,
                "updated_at": utcnow(),
            }
            # Keep already-built objects for fields the caller did not touch.
            if "rules" not in changes:
                merged["rules"] = current.rules
            if "exemptions" not in changes:
                merged["exemptions"] = current.exemptions
            if "enforcement" not in changes:
                merged["enforcement"] = current.enforcement

            policy = Policy.from_dict(merged)
            self._warn_unknown_conditions(policy)
            await self.store.put(policy)

        logger.info("policy_updated", policy_id=policy_id, fields=sorted(changes))
        return policy

    async def delete_policy(self, policy_id: str) -> bool:
        async with self._lock(policy_id):
            deleted = await self.store.delete(policy_id)
        if deleted:
            logger.info("policy_deleted", policy_id=policy_id)
        return deleted

    async def set_enabled(self, policy_id: str, enabled: bool) -> Policy | None:
        return await self.update_policy(policy_id, {"enabled": enabled})

    # -- Exemptions --

    async def add_exemption(
        self,
        policy_id: str,
        *,
        reason: str,
        approved_by: str,
        repository_id: str | None = None,
        expires_at: datetime | str | None = None,
    ) -> Exemption:
        """
        Append an exemption to a policy.

        An unknown policy id is a logged no-op: the exemption is still
        returned, so callers that care must check the policy exists first.
        """
        exemption = Exemption(
            id=new_exemption_id(),
            reason=reason,
            approved_by=approved_by,
            repository_id=repository_id,
            expires_at=parse_datetime(expires_at),
            created_at=utcnow(),
        )

        async with self._lock(policy_id):
            policy = await self.store.get(policy_id)
            if policy is None:
                logger.warning(
                    "exemption_policy_not_found",
                    policy_id=policy_id,
                    exemption_id=exemption.id,
                )
                return exemption
            await self.store.put(policy.with_exemption(exemption))

        logger.info(
            "exemption_added",
            policy_id=policy_id,
            exemption_id=exemption.id,
            repository_id=repository_id,
            approved_by=approved_by,
            expires_at=exemption.expires_at.isoformat() if exemption.expires_at else None,
        )
        return exemption

    async def revoke_exemption(self, policy_id: str, exemption_id: str) -> bool:
        """Remove an exemption. Returns False when the policy or exemption is unknown."""
        async with self._lock(policy_id):
            policy = await self.store.get(policy_id)
            if policy is None or not any(e.id == exemption_id for e in policy.exemptions):
                return False
            await self.store.put(policy.without_exemption(exemption_id))

        logger.info("exemption_revoked", policy_id=policy_id, exemption_id=exemption_id)
        return True

    async def list_exemptions(self, policy_id: str) -> list[Exemption]:
        policy = await self.require_policy(policy_id)
        return list(policy.exemptions)

    async def replace_policy(self, policy: Policy) -> Policy:
        """Insert or overwrite a fully-built policy (used when loading policy files)."""
        async with self._lock(policy.id):
            existing = await self.store.get(policy.id)
            if existing is not None:
                policy = replace(policy, created_at=existing.created_at, updated_at=utcnow())
            await self.store.put(policy)
        return policy

    @staticmethod
    def _warn_unknown_conditions(policy: Policy) -> None:
        for rule in policy.rules:
            if rule.condition not in KNOWN_CONDITIONS:
                logger.warning(
                    "rule_condition_unrecognized",
                    policy_id=policy.id,
                    rule_id=rule.id,
                    condition=rule.condition,
                )
