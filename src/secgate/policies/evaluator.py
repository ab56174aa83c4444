"""
Policy evaluator.

Runs every rule of a policy against a repository's metrics snapshot and
turns fired rules into Violation records. Violations covered by an active
exemption are recorded as EXEMPTED rather than dropped so the gate keeps an
auditable trail of what was waived.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping

import structlog

from secgate.core.errors import InvalidRuleError
from secgate.policies.models import (
    Exemption,
    Policy,
    Rule,
    Violation,
    ViolationStatus,
    utcnow,
)
from secgate.policies.rules import RuleOutcome, evaluate_rule

logger = structlog.get_logger()


def find_matching_exemption(
    policy: Policy,
    repository_id: str,
    at: datetime,
) -> Exemption | None:
    """Return the first exemption of the policy active for the repository at `at`."""
    for exemption in policy.exemptions:
        if exemption.matches(repository_id, at):
            return exemption
    return None


class PolicyEvaluator:
    """Evaluates policies against metrics snapshots."""

    def evaluate_policy(
        self,
        policy: Policy,
        repository_id: str,
        snapshot: Mapping[str, Any],
        now: datetime | None = None,
    ) -> list[Violation]:
        """
        Evaluate one policy for a repository.

        Disabled policies produce no violations. Rules that are not
        applicable (unknown metric, incompatible value) are skipped and
        logged as configuration warnings.

        Args:
            policy: Policy to evaluate
            repository_id: Repository the snapshot belongs to
            snapshot: Metric key to observed value
            now: Evaluation instant (defaults to current UTC time)

        Returns:
            Violations in rule order, ACTIVE or EXEMPTED
        """
        if not policy.enabled:
            return []

        now = now or utcnow()
        exemption = find_matching_exemption(policy, repository_id, now)
        violations: list[Violation] = []

        for rule in policy.rules:
            outcome = self._evaluate_rule(policy, rule, snapshot)
            if outcome is None or not outcome.violated:
                continue
            violations.append(
                self._build_violation(policy, rule, repository_id, outcome, exemption, now)
            )

        return violations

    def evaluate_policies(
        self,
        policies: Iterable[Policy],
        repository_id: str,
        snapshot: Mapping[str, Any],
        now: datetime | None = None,
    ) -> list[Violation]:
        """Evaluate every enabled policy, preserving policy order."""
        now = now or utcnow()
        violations: list[Violation] = []
        for policy in policies:
            violations.extend(self.evaluate_policy(policy, repository_id, snapshot, now))
        return violations

    def _evaluate_rule(
        self,
        policy: Policy,
        rule: Rule,
        snapshot: Mapping[str, Any],
    ) -> RuleOutcome | None:
        try:
            outcome = evaluate_rule(rule, snapshot)
        except InvalidRuleError as exc:
            logger.warning(
                "rule_not_applicable",
                policy_id=policy.id,
                rule_id=rule.id,
                condition=rule.condition,
                reason=exc.message,
            )
            return None

        if outcome is None:
            logger.warning(
                "rule_not_applicable",
                policy_id=policy.id,
                rule_id=rule.id,
                condition=rule.condition,
                reason="metric not present in snapshot",
            )
        return outcome

    @staticmethod
    def _build_violation(
        policy: Policy,
        rule: Rule,
        repository_id: str,
        outcome: RuleOutcome,
        exemption: Exemption | None,
        now: datetime,
    ) -> Violation:
        details: dict[str, Any] = {
            "rule": rule.condition,
            "expected": list(rule.value) if isinstance(rule.value, tuple) else rule.value,
            "actual": outcome.actual_value,
            "operator": rule.operator.value,
        }
        if exemption is not None:
            details["exemption_id"] = exemption.id

        return Violation(
            id=f"{policy.id}_{rule.id}_{int(now.timestamp() * 1000)}",
            policy_id=policy.id,
            repository_id=str(repository_id),
            rule_id=rule.id,
            severity=policy.severity,
            description=f'Policy "{policy.name}" violated: {rule.description}',
            details=details,
            status=ViolationStatus.EXEMPTED if exemption else ViolationStatus.ACTIVE,
            detected_at=now,
        )
