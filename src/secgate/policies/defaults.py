"""
Built-in security policies.

Seeded into every registry on startup. They are ordinary policies and can
be disabled, edited or deleted like any custom policy.
"""

from __future__ import annotations

from secgate.policies.models import (
    EnforcementAction,
    EnforcementType,
    Policy,
    PolicyCategory,
    Rule,
    RuleOperator,
    RuleType,
    Severity,
)

RESTRICTED_LICENSES = ("GPL-2.0", "GPL-3.0", "AGPL-3.0", "SSPL-1.0")


def default_policies() -> list[Policy]:
    """Return fresh copies of the built-in policies in registry order."""
    return [
        Policy(
            id="critical-vulns",
            name="Critical Vulnerability Policy",
            description="Block deployments with critical vulnerabilities",
            category=PolicyCategory.VULNERABILITY,
            severity=Severity.CRITICAL,
            rules=(
                Rule(
                    id="crit-vuln-threshold",
                    type=RuleType.THRESHOLD,
                    condition="critical_vulnerabilities",
                    operator=RuleOperator.GT,
                    value=0,
                    description="No critical vulnerabilities allowed",
                ),
            ),
            enforcement=EnforcementAction(
                type=EnforcementType.BLOCK,
                block_deployment=True,
                notification_channels=("email", "slack"),
                approval_required=True,
                escalation_path=("security-team", "ciso"),
            ),
        ),
        Policy(
            id="high-vuln-threshold",
            name="High Vulnerability Threshold",
            description="Limit high severity vulnerabilities in production",
            category=PolicyCategory.VULNERABILITY,
            severity=Severity.HIGH,
            rules=(
                Rule(
                    id="high-vuln-limit",
                    type=RuleType.THRESHOLD,
                    condition="high_vulnerabilities",
                    operator=RuleOperator.GT,
                    value=3,
                    description="Maximum 3 high severity vulnerabilities allowed",
                ),
            ),
            enforcement=EnforcementAction(
                type=EnforcementType.REQUIRE_APPROVAL,
                block_deployment=False,
                notification_channels=("email",),
                approval_required=True,
                escalation_path=("security-team",),
            ),
        ),
        Policy(
            id="restricted-licenses",
            name="Restricted License Policy",
            description="Block usage of copyleft and restrictive licenses",
            category=PolicyCategory.LICENSE,
            severity=Severity.HIGH,
            rules=(
                Rule(
                    id="copyleft-blocklist",
                    type=RuleType.BLOCKLIST,
                    condition="license_type",
                    operator=RuleOperator.IN,
                    value=",".join(RESTRICTED_LICENSES),
                    description="Copyleft licenses not permitted",
                ),
            ),
            enforcement=EnforcementAction(
                type=EnforcementType.BLOCK,
                block_deployment=True,
                notification_channels=("email", "slack"),
                approval_required=True,
                escalation_path=("legal-team", "cto"),
            ),
        ),
        Policy(
            id="outdated-deps",
            name="Outdated Dependencies Policy",
            description="Flag severely outdated dependencies",
            category=PolicyCategory.DEPENDENCY,
            severity=Severity.MEDIUM,
            rules=(
                Rule(
                    id="dep-age-limit",
                    type=RuleType.THRESHOLD,
                    condition="dependency_age_months",
                    operator=RuleOperator.GT,
                    value=24,
                    description="Dependencies older than 24 months require review",
                ),
            ),
            enforcement=EnforcementAction(
                type=EnforcementType.WARN,
                block_deployment=False,
                notification_channels=("email",),
                approval_required=False,
                escalation_path=("dev-team",),
            ),
        ),
        Policy(
            id="code-quality",
            name="Code Quality Standards",
            description="Enforce minimum code quality standards",
            category=PolicyCategory.CODE_QUALITY,
            severity=Severity.MEDIUM,
            rules=(
                Rule(
                    id="test-coverage",
                    type=RuleType.THRESHOLD,
                    condition="test_coverage_percentage",
                    operator=RuleOperator.LT,
                    value=80,
                    description="Minimum 80% test coverage required",
                ),
                Rule(
                    id="security-hotspots",
                    type=RuleType.THRESHOLD,
                    condition="security_hotspots",
                    operator=RuleOperator.GT,
                    value=5,
                    description="Maximum 5 security hotspots allowed",
                ),
            ),
            enforcement=EnforcementAction(
                type=EnforcementType.WARN,
                block_deployment=False,
                notification_channels=("email",),
                approval_required=False,
                escalation_path=("dev-team", "tech-lead"),
            ),
        ),
    ]


DEFAULT_POLICY_IDS = tuple(policy.id for policy in default_policies())
