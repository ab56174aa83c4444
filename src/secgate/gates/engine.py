"""
Security policy engine.

Builds deployment gates for (repository, commit) pairs from the enabled
policies of the registry and a repository's metrics snapshot, and runs the
approval workflow on them.

Gate status is a pure function of two flags computed over failed policies:

- any failed policy blocks deployment  -> BLOCKED
- any failed policy requires approval  -> PENDING
- otherwise                            -> APPROVED (completed immediately)

EXEMPTED violations never count toward either flag.
"""

from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from functools import partial
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

import structlog

from secgate.core.errors import (
    CollaboratorError,
    InvalidStateError,
    NotFoundError,
    SecGateError,
    ValidationError,
)
from secgate.gates.store import GateStore, InMemoryGateStore
from secgate.metrics.providers import MetricsSnapshotProvider
from secgate.notifications.dispatcher import NotificationDispatcher
from secgate.policies.audit import AuditAction
from secgate.policies.evaluator import PolicyEvaluator
from secgate.policies.models import (
    ApprovalDecision,
    CheckStatus,
    ComplianceStatus,
    ComplianceSummary,
    DeploymentGate,
    GateApproval,
    GateBypass,
    GateCheck,
    GateStatus,
    Policy,
    PolicyResult,
    Violation,
    utcnow,
)
from secgate.policies.recorder import PolicyAuditRecorder
from secgate.policies.registry import PolicyRegistry

logger = structlog.get_logger()

DEFAULT_WINDOW_DAYS = 30


def derive_gate_status(should_block: bool, requires_approval: bool) -> GateStatus:
    if should_block:
        return GateStatus.BLOCKED
    if requires_approval:
        return GateStatus.PENDING
    return GateStatus.APPROVED


def _group_by_policy(violations: Iterable[Violation]) -> dict[str, list[Violation]]:
    grouped: dict[str, list[Violation]] = defaultdict(list)
    for violation in violations:
        grouped[violation.policy_id].append(violation)
    return grouped


def build_gate_checks(
    policies: Iterable[Policy],
    violations: Iterable[Violation],
) -> list[GateCheck]:
    """One check per enabled policy; FAIL iff the policy has an ACTIVE violation."""
    grouped = _group_by_policy(violations)
    checks: list[GateCheck] = []
    for policy in policies:
        if not policy.enabled:
            continue
        policy_violations = tuple(grouped.get(policy.id, ()))
        failed = any(v.is_active for v in policy_violations)
        checks.append(
            GateCheck(
                policy_id=policy.id,
                status=CheckStatus.FAIL if failed else CheckStatus.PASS,
                message=(
                    f'Policy "{policy.name}" violated'
                    if failed
                    else f'Policy "{policy.name}" compliant'
                ),
                details=policy_violations,
            )
        )
    return checks


class SecurityPolicyEngine:
    """Gate construction, approval workflow and compliance projection."""

    def __init__(
        self,
        registry: PolicyRegistry,
        metrics_provider: MetricsSnapshotProvider,
        *,
        dispatcher: NotificationDispatcher | None = None,
        gate_store: GateStore | None = None,
        recorder: PolicyAuditRecorder | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.metrics_provider = metrics_provider
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.gate_store: GateStore = gate_store or InMemoryGateStore()
        self.recorder = recorder
        self.window_days = window_days
        self.clock = clock
        self.evaluator = PolicyEvaluator()
        self._gate_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._gate_lock_users: Counter[tuple[str, str]] = Counter()
        self._notification_tasks: set[asyncio.Task[Any]] = set()

    @asynccontextmanager
    async def _gate_lock(self, key: tuple[str, str]) -> AsyncIterator[None]:
        """Serialise writes to one gate; the lock is dropped once nobody holds or awaits it."""
        lock = self._gate_locks.setdefault(key, asyncio.Lock())
        self._gate_lock_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._gate_lock_users[key] -= 1
            if not self._gate_lock_users[key]:
                del self._gate_lock_users[key]
                del self._gate_locks[key]

    # -- Notifications --

    def _schedule_notifications(
        self,
        violations: list[Violation],
        gate: DeploymentGate,
        policies: Mapping[str, Policy],
    ) -> None:
        task = asyncio.create_task(self.dispatcher.dispatch(violations, gate, policies))
        self._notification_tasks.add(task)
        task.add_done_callback(partial(self._notifications_done, gate))

    def _notifications_done(self, gate: DeploymentGate, task: asyncio.Task[Any]) -> None:
        self._notification_tasks.discard(task)
        if task.cancelled():
            logger.warning(
                "notification_cancelled",
                repository_id=gate.repository_id,
                commit_sha=gate.commit_sha,
            )
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "notification_failed",
                repository_id=gate.repository_id,
                commit_sha=gate.commit_sha,
                error=str(exc) or type(exc).__name__,
            )

    async def drain_notifications(self) -> None:
        """Wait for every notification delivery still in flight."""
        pending = list(self._notification_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -- Evaluation --

    async def _fetch_snapshot(self, repository_id: str) -> Mapping[str, Any]:
        """
        Fetch the metrics snapshot.

        Missing metrics are never replaced by zeros: any provider failure
        surfaces as CollaboratorError so callers fail safe.
        """
        try:
            snapshot = await self.metrics_provider.get_snapshot(repository_id, self.window_days)
        except SecGateError:
            raise
        except Exception as exc:
            logger.error("metrics_snapshot_failed", repository_id=repository_id, error=str(exc))
            raise CollaboratorError(
                f"Metrics provider failed for repository {repository_id}: {exc}",
                {"repository_id": repository_id},
            ) from exc

        if not isinstance(snapshot, Mapping):
            raise CollaboratorError(
                "Metrics provider returned an invalid snapshot",
                {"repository_id": repository_id},
            )
        return snapshot

    async def _evaluate(
        self, repository_id: str
    ) -> tuple[tuple[Policy, ...], list[Violation], datetime]:
        policies = tuple(p for p in await self.registry.snapshot() if p.enabled)
        snapshot = await self._fetch_snapshot(repository_id)
        now = self.clock()
        violations = self.evaluator.evaluate_policies(policies, repository_id, snapshot, now)
        return policies, violations, now

    async def evaluate_repository(self, repository_id: str) -> list[Violation]:
        """All violations (ACTIVE and EXEMPTED) across enabled policies."""
        _, violations, _ = await self._evaluate(repository_id)
        return violations

    # -- Gates --

    async def create_deployment_gate(
        self,
        repository_id: str,
        commit_sha: str,
        actor: str | None = None,
    ) -> DeploymentGate:
        """
        Evaluate a commit and store the resulting gate.

        The policy set is read once; later registry edits do not affect this
        gate. The gate is stored only after it is fully built, so an
        abandoned call leaves nothing behind. Notifications go out in the
        background and never delay the returned gate.

        Raises:
            CollaboratorError: If the metrics snapshot is unavailable
            NotFoundError: If the metrics provider does not know the repository
        """
        policies, violations, now = await self._evaluate(repository_id)
        checks = build_gate_checks(policies, violations)
        by_id = {policy.id: policy for policy in policies}

        failed = [by_id[c.policy_id] for c in checks if c.status == CheckStatus.FAIL]
        status = derive_gate_status(
            should_block=any(p.enforcement.block_deployment for p in failed),
            requires_approval=any(p.enforcement.approval_required for p in failed),
        )

        gate = DeploymentGate(
            repository_id=repository_id,
            commit_sha=commit_sha,
            status=status,
            violations=tuple(violations),
            gate_checks=tuple(checks),
            created_at=now,
            completed_at=now if status == GateStatus.APPROVED else None,
        )

        async with self._gate_lock(gate.key):
            await self.gate_store.save(gate)

        logger.info(
            "gate_created",
            repository_id=repository_id,
            commit_sha=commit_sha,
            status=status.value,
            active_violations=len(gate.active_violations),
            exempted_violations=len(violations) - len(gate.active_violations),
        )

        self._schedule_notifications(violations, gate, by_id)
        if self.recorder is not None:
            await self.recorder.record_gate_evaluation(gate, actor=actor)
        return gate

    async def get_deployment_gate(self, repository_id: str, commit_sha: str) -> DeploymentGate:
        gate = await self.gate_store.get(repository_id, commit_sha)
        if gate is None:
            raise NotFoundError(
                f"No deployment gate for {repository_id}@{commit_sha}",
                {"repository_id": repository_id, "commit_sha": commit_sha},
            )
        return gate

    async def list_deployment_gates(self, repository_id: str) -> list[DeploymentGate]:
        return await self.gate_store.list_for_repository(repository_id)

    async def approve_deployment_gate(
        self,
        repository_id: str,
        commit_sha: str,
        approver_email: str,
        reason: str,
    ) -> DeploymentGate:
        """
        Approve a PENDING gate.

        Raises:
            NotFoundError: If no gate exists for the commit
            InvalidStateError: If the gate is not PENDING
        """
        return await self._decide(
            repository_id, commit_sha, approver_email, reason, ApprovalDecision.APPROVE
        )

    async def reject_deployment_gate(
        self,
        repository_id: str,
        commit_sha: str,
        approver_email: str,
        reason: str,
    ) -> DeploymentGate:
        """Reject a PENDING gate; it becomes BLOCKED without a completion time."""
        return await self._decide(
            repository_id, commit_sha, approver_email, reason, ApprovalDecision.REJECT
        )

    async def _decide(
        self,
        repository_id: str,
        commit_sha: str,
        approver_email: str,
        reason: str,
        decision: ApprovalDecision,
    ) -> DeploymentGate:
        async with self._gate_lock((repository_id, commit_sha)):
            gate = await self.get_deployment_gate(repository_id, commit_sha)
            if not gate.is_pending:
                raise InvalidStateError(
                    f"Cannot {decision.value.lower()} gate in status {gate.status.value}",
                    {
                        "repository_id": repository_id,
                        "commit_sha": commit_sha,
                        "status": gate.status.value,
                    },
                )

            now = self.clock()
            approval = GateApproval(
                approver_email=approver_email,
                decision=decision,
                reason=reason,
                timestamp=now,
            )
            if decision == ApprovalDecision.APPROVE:
                updated = replace(
                    gate,
                    status=GateStatus.APPROVED,
                    approvals=gate.approvals + (approval,),
                    completed_at=now,
                )
            else:
                updated = replace(
                    gate,
                    status=GateStatus.BLOCKED,
                    approvals=gate.approvals + (approval,),
                )
            await self.gate_store.save(updated)

        logger.info(
            "gate_decision_recorded",
            repository_id=repository_id,
            commit_sha=commit_sha,
            decision=decision.value,
            approver=approver_email,
            status=updated.status.value,
        )
        if self.recorder is not None:
            action = (
                AuditAction.APPROVE if decision == ApprovalDecision.APPROVE else AuditAction.REJECT
            )
            await self.recorder.record_decision(updated, action, approver_email, reason)
        return updated

    async def bypass_deployment_gate(
        self,
        repository_id: str,
        commit_sha: str,
        actor: str,
        reason: str,
    ) -> DeploymentGate:
        """
        Administrative override: force any gate to BYPASSED.

        Raises:
            ValidationError: If actor or reason is blank
            NotFoundError: If no gate exists for the commit
        """
        if not reason or not reason.strip():
            raise ValidationError("A bypass requires a reason", {"commit_sha": commit_sha})
        if not actor or not actor.strip():
            raise ValidationError("A bypass requires an actor", {"commit_sha": commit_sha})

        async with self._gate_lock((repository_id, commit_sha)):
            gate = await self.get_deployment_gate(repository_id, commit_sha)
            now = self.clock()
            updated = replace(
                gate,
                status=GateStatus.BYPASSED,
                bypass=GateBypass(actor=actor, reason=reason.strip(), timestamp=now),
                completed_at=now,
            )
            await self.gate_store.save(updated)

        logger.warning(
            "gate_bypassed",
            repository_id=repository_id,
            commit_sha=commit_sha,
            actor=actor,
            previous_status=gate.status.value,
            reason=reason,
        )
        if self.recorder is not None:
            await self.recorder.record_decision(updated, AuditAction.BYPASS, actor, reason)
        return updated

    # -- Compliance --

    async def get_repository_compliance(self, repository_id: str) -> ComplianceSummary:
        """
        Read-only compliance view over enabled policies.

        A policy with an ACTIVE violation is FAIL when its enforcement
        blocks deployment and WARN otherwise.
        """
        policies, violations, now = await self._evaluate(repository_id)
        grouped = _group_by_policy(violations)

        results: list[PolicyResult] = []
        for policy in policies:
            policy_violations = tuple(grouped.get(policy.id, ()))
            if not any(v.is_active for v in policy_violations):
                status = CheckStatus.PASS
            elif policy.enforcement.block_deployment:
                status = CheckStatus.FAIL
            else:
                status = CheckStatus.WARN
            results.append(
                PolicyResult(
                    policy_id=policy.id,
                    policy_name=policy.name,
                    status=status,
                    violations=policy_violations,
                )
            )

        statuses = {r.status for r in results}
        if CheckStatus.FAIL in statuses:
            overall = ComplianceStatus.NON_COMPLIANT
        elif CheckStatus.WARN in statuses:
            overall = ComplianceStatus.WARNING
        else:
            overall = ComplianceStatus.COMPLIANT

        return ComplianceSummary(
            overall_status=overall,
            policy_results=tuple(results),
            last_evaluated=now,
        )
