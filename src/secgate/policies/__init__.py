"""
Security policy model, registry and evaluation.

Provides the policy data model, the rule evaluator, per-policy evaluation
with exemption filtering, the policy registry, and audit logging for gate
evaluations and decisions.
"""

from secgate.policies.audit import AuditAction, PolicyAuditEvent
from secgate.policies.defaults import DEFAULT_POLICY_IDS, default_policies
from secgate.policies.evaluator import PolicyEvaluator, find_matching_exemption
from secgate.policies.models import (
    ApprovalDecision,
    CheckStatus,
    ComplianceStatus,
    ComplianceSummary,
    DeploymentGate,
    EnforcementAction,
    EnforcementType,
    Exemption,
    GateApproval,
    GateBypass,
    GateCheck,
    GateStatus,
    Policy,
    PolicyCategory,
    PolicyResult,
    Rule,
    RuleOperator,
    RuleType,
    Severity,
    Violation,
    ViolationStatus,
)
from secgate.policies.recorder import PolicyAuditRecorder
from secgate.policies.registry import PolicyRegistry
from secgate.policies.rules import RuleOutcome, evaluate_rule
from secgate.policies.store import (
    AuditStore,
    InMemoryAuditStore,
    InMemoryPolicyStore,
    PolicyStore,
)

__all__ = [
    "ApprovalDecision",
    "AuditAction",
    "AuditStore",
    "CheckStatus",
    "ComplianceStatus",
    "ComplianceSummary",
    "DEFAULT_POLICY_IDS",
    "DeploymentGate",
    "EnforcementAction",
    "EnforcementType",
    "Exemption",
    "GateApproval",
    "GateBypass",
    "GateCheck",
    "GateStatus",
    "InMemoryAuditStore",
    "InMemoryPolicyStore",
    "Policy",
    "PolicyAuditEvent",
    "PolicyAuditRecorder",
    "PolicyCategory",
    "PolicyEvaluator",
    "PolicyRegistry",
    "PolicyResult",
    "PolicyStore",
    "Rule",
    "RuleOperator",
    "RuleOutcome",
    "RuleType",
    "Severity",
    "Violation",
    "ViolationStatus",
    "default_policies",
    "evaluate_rule",
    "find_matching_exemption",
]
