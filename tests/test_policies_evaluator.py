"""Tests for per-policy evaluation and exemption filtering."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from structlog.testing import capture_logs

from secgate.policies import (
    Exemption,
    Policy,
    PolicyEvaluator,
    ViolationStatus,
    default_policies,
    find_matching_exemption,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def builtin(policy_id: str) -> Policy:
    return next(p for p in default_policies() if p.id == policy_id)


class TestEvaluatePolicy:
    def test_violation_fields(self):
        evaluator = PolicyEvaluator()
        policy = builtin("critical-vulns")

        violations = evaluator.evaluate_policy(
            policy, "repo-1", {"critical_vulnerabilities": 2}, NOW
        )

        assert len(violations) == 1
        violation = violations[0]
        assert violation.id == f"critical-vulns_crit-vuln-threshold_{int(NOW.timestamp() * 1000)}"
        assert violation.policy_id == "critical-vulns"
        assert violation.repository_id == "repo-1"
        assert violation.rule_id == "crit-vuln-threshold"
        assert violation.severity == policy.severity
        assert violation.status == ViolationStatus.ACTIVE
        assert violation.detected_at == NOW
        assert violation.description == (
            'Policy "Critical Vulnerability Policy" violated: No critical vulnerabilities allowed'
        )
        assert violation.details == {
            "rule": "critical_vulnerabilities",
            "expected": 0,
            "actual": 2,
            "operator": "GT",
        }

    def test_compliant_snapshot_yields_nothing(self):
        violations = PolicyEvaluator().evaluate_policy(
            builtin("critical-vulns"), "repo-1", {"critical_vulnerabilities": 0}, NOW
        )
        assert violations == []

    def test_disabled_policy_yields_nothing(self):
        policy = replace(builtin("critical-vulns"), enabled=False)
        violations = PolicyEvaluator().evaluate_policy(
            policy, "repo-1", {"critical_vulnerabilities": 9}, NOW
        )
        assert violations == []

    def test_each_fired_rule_yields_a_violation(self):
        violations = PolicyEvaluator().evaluate_policy(
            builtin("code-quality"),
            "repo-1",
            {"test_coverage_percentage": 50, "security_hotspots": 7},
            NOW,
        )
        assert [v.rule_id for v in violations] == ["test-coverage", "security-hotspots"]

    def test_missing_metric_skipped_with_warning(self):
        with capture_logs() as logs:
            violations = PolicyEvaluator().evaluate_policy(
                builtin("critical-vulns"), "repo-1", {"high_vulnerabilities": 10}, NOW
            )

        assert violations == []
        events = [e for e in logs if e["event"] == "rule_not_applicable"]
        assert events and events[0]["log_level"] == "warning"
        assert events[0]["rule_id"] == "crit-vuln-threshold"

    def test_incomparable_metric_skipped_not_raised(self):
        with capture_logs() as logs:
            violations = PolicyEvaluator().evaluate_policy(
                builtin("critical-vulns"), "repo-1", {"critical_vulnerabilities": "n/a"}, NOW
            )
        assert violations == []
        assert any(e["event"] == "rule_not_applicable" for e in logs)


class TestExemptions:
    def test_matching_exemption_marks_violation_exempted(self):
        exemption = Exemption(id="e1", reason="accepted", approved_by="sec@co")
        policy = builtin("critical-vulns").with_exemption(exemption)

        violations = PolicyEvaluator().evaluate_policy(
            policy, "repo-1", {"critical_vulnerabilities": 2}, NOW
        )

        assert violations[0].status == ViolationStatus.EXEMPTED
        assert violations[0].details["exemption_id"] == "e1"

    def test_expired_exemption_ignored(self):
        exemption = Exemption(
            id="e1", reason="r", approved_by="a", expires_at=NOW - timedelta(days=1)
        )
        policy = builtin("critical-vulns").with_exemption(exemption)

        violations = PolicyEvaluator().evaluate_policy(
            policy, "repo-1", {"critical_vulnerabilities": 2}, NOW
        )
        assert violations[0].status == ViolationStatus.ACTIVE

    def test_exemption_scoped_to_other_repository_ignored(self):
        exemption = Exemption(id="e1", reason="r", approved_by="a", repository_id="repo-2")
        policy = builtin("critical-vulns").with_exemption(exemption)

        assert find_matching_exemption(policy, "repo-1", NOW) is None
        assert find_matching_exemption(policy, "repo-2", NOW) == exemption

    def test_expiry_checked_at_evaluation_time(self):
        exemption = Exemption(
            id="e1", reason="r", approved_by="a", expires_at=NOW + timedelta(hours=1)
        )
        policy = builtin("critical-vulns").with_exemption(exemption)
        evaluator = PolicyEvaluator()
        snapshot = {"critical_vulnerabilities": 1}

        before = evaluator.evaluate_policy(policy, "repo-1", snapshot, NOW)
        after = evaluator.evaluate_policy(policy, "repo-1", snapshot, NOW + timedelta(hours=2))

        assert before[0].status == ViolationStatus.EXEMPTED
        assert after[0].status == ViolationStatus.ACTIVE


class TestEvaluatePolicies:
    def test_policy_order_preserved(self):
        snapshot = {
            "critical_vulnerabilities": 1,
            "high_vulnerabilities": 4,
            "license_type": ["GPL-3.0"],
            "dependency_age_months": 30,
            "test_coverage_percentage": 10,
            "security_hotspots": 0,
        }
        violations = PolicyEvaluator().evaluate_policies(
            default_policies(), "repo-1", snapshot, NOW
        )
        assert [v.policy_id for v in violations] == [
            "critical-vulns",
            "high-vuln-threshold",
            "restricted-licenses",
            "outdated-deps",
            "code-quality",
        ]

    def test_deterministic_for_fixed_inputs(self):
        snapshot = {"critical_vulnerabilities": 3, "high_vulnerabilities": 5}
        evaluator = PolicyEvaluator()
        first = evaluator.evaluate_policies(default_policies(), "repo-1", snapshot, NOW)
        second = evaluator.evaluate_policies(default_policies(), "repo-1", snapshot, NOW)
        assert first == second
