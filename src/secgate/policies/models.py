"""
Security policy domain models.

Policies, rules, enforcement actions and exemptions are owned by the
policy registry. Violations, gate checks and deployment gates are value
objects produced by an evaluation. Every model is a frozen dataclass so a
snapshot taken for an evaluation cannot change underneath it.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Iterable, Mapping, TypeVar

from secgate.core.errors import InvalidRuleError, ValidationError

E = TypeVar("E", bound=StrEnum)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: datetime | str | None) -> datetime | None:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp: {value!r}") from exc
    return ensure_utc(value)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def as_number(value: Any) -> int | float | None:
    """Coerce ints, floats and numeric strings to a number, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        token = value.strip()
        try:
            if "." in token:
                return float(token)
            return int(token)
        except ValueError:
            return None
    return None


def _coerce_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Invalid {field_name}: {value!r}", {"allowed": allowed}
        ) from exc


class PolicyCategory(StrEnum):
    VULNERABILITY = "VULNERABILITY"
    LICENSE = "LICENSE"
    CODE_QUALITY = "CODE_QUALITY"
    DEPENDENCY = "DEPENDENCY"
    COMPLIANCE = "COMPLIANCE"


class Severity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RuleType(StrEnum):
    THRESHOLD = "THRESHOLD"
    BLOCKLIST = "BLOCKLIST"
    ALLOWLIST = "ALLOWLIST"
    PATTERN = "PATTERN"
    CUSTOM = "CUSTOM"


class RuleOperator(StrEnum):
    GT = "GT"
    LT = "LT"
    EQ = "EQ"
    NE = "NE"
    CONTAINS = "CONTAINS"
    MATCHES = "MATCHES"
    IN = "IN"
    NOT_IN = "NOT_IN"


class EnforcementType(StrEnum):
    BLOCK = "BLOCK"
    WARN = "WARN"
    NOTIFY = "NOTIFY"
    FAIL_BUILD = "FAIL_BUILD"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"


class ViolationStatus(StrEnum):
    ACTIVE = "ACTIVE"
    EXEMPTED = "EXEMPTED"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"


class CheckStatus(StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"


class GateStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    BLOCKED = "BLOCKED"
    BYPASSED = "BYPASSED"


class ApprovalDecision(StrEnum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ComplianceStatus(StrEnum):
    COMPLIANT = "COMPLIANT"
    WARNING = "WARNING"
    NON_COMPLIANT = "NON_COMPLIANT"


# -- Rules --


def compile_operand(operator: RuleOperator, value: Any) -> Any:
    """
    Compile a rule value into the operand its operator evaluates against.

    IN/NOT_IN take a comma-delimited string or a list and become a frozenset
    of trimmed strings, MATCHES becomes a compiled regular expression and
    GT/LT require a number. EQ, NE and CONTAINS keep the raw value.

    Raises:
        InvalidRuleError: If the value cannot be used with the operator
    """
    if operator in (RuleOperator.IN, RuleOperator.NOT_IN):
        if isinstance(value, str):
            items: Iterable[Any] = value.split(",")
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = value
        else:
            items = [value]
        members = frozenset(str(item).strip() for item in items if str(item).strip())
        if not members:
            raise InvalidRuleError(f"Operator {operator} requires at least one value")
        return members

    if operator == RuleOperator.MATCHES:
        try:
            return re.compile(str(value))
        except re.error as exc:
            raise InvalidRuleError(
                f"Invalid regular expression: {value!r}", {"error": str(exc)}
            ) from exc

    if operator in (RuleOperator.GT, RuleOperator.LT):
        number = as_number(value)
        if number is None:
            raise InvalidRuleError(f"Operator {operator} requires a numeric value, got {value!r}")
        return number

    if operator == RuleOperator.CONTAINS:
        return str(value)

    return value


@dataclass(frozen=True)
class Rule:
    """A single condition evaluated against one metric of a snapshot."""

    id: str
    type: RuleType
    condition: str
    operator: RuleOperator
    value: Any
    description: str = ""
    operand: Any = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", _coerce_enum(RuleType, self.type, "rule type"))
        object.__setattr__(
            self, "operator", _coerce_enum(RuleOperator, self.operator, "rule operator")
        )
        if isinstance(self.value, (list, set, frozenset)):
            object.__setattr__(self, "value", tuple(self.value))
        if not self.condition:
            raise InvalidRuleError("Rule condition is required", {"rule_id": self.id})

        try:
            operand = compile_operand(self.operator, self.value)
        except InvalidRuleError as exc:
            exc.details.setdefault("rule_id", self.id)
            raise
        object.__setattr__(self, "operand", operand)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "condition": self.condition,
            "operator": self.operator.value,
            "value": list(self.value) if isinstance(self.value, tuple) else self.value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | Rule) -> Rule:
        if isinstance(data, Rule):
            return data
        if "operator" not in data or "value" not in data:
            raise InvalidRuleError(
                "Rule requires an operator and a value", {"rule_id": data.get("id")}
            )
        return cls(
            id=str(data.get("id") or f"rule_{uuid.uuid4().hex[:8]}"),
            type=data.get("type", RuleType.THRESHOLD),
            condition=str(data.get("condition") or ""),
            operator=data["operator"],
            value=data["value"],
            description=str(data.get("description") or ""),
        )


# -- Enforcement --


@dataclass(frozen=True)
class EnforcementAction:
    """
    Consequence attached to a policy when one of its rules fires.

    block_deployment and approval_required default from the enforcement
    type. BLOCK and FAIL_BUILD actions always block and a REQUIRE_APPROVAL
    action always requires approval; contradicting flags are rejected.
    """

    type: EnforcementType = EnforcementType.WARN
    block_deployment: bool | None = None
    notification_channels: tuple[str, ...] = ()
    approval_required: bool | None = None
    escalation_path: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        kind = _coerce_enum(EnforcementType, self.type, "enforcement type")

        block = self.block_deployment
        if block is None:
            block = kind in (EnforcementType.BLOCK, EnforcementType.FAIL_BUILD)
        elif kind in (EnforcementType.BLOCK, EnforcementType.FAIL_BUILD) and not block:
            raise ValidationError(f"{kind.value} enforcement must block deployment")

        approval = self.approval_required
        if approval is None:
            approval = kind == EnforcementType.REQUIRE_APPROVAL
        elif kind == EnforcementType.REQUIRE_APPROVAL and not approval:
            raise ValidationError("REQUIRE_APPROVAL enforcement must require approval")

        object.__setattr__(self, "type", kind)
        object.__setattr__(self, "block_deployment", bool(block))
        object.__setattr__(self, "approval_required", bool(approval))
        # Channels behave as a set; keep first-seen order for stable fan-out.
        object.__setattr__(
            self,
            "notification_channels",
            tuple(dict.fromkeys(str(c) for c in self.notification_channels)),
        )
        object.__setattr__(self, "escalation_path", tuple(str(e) for e in self.escalation_path))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "block_deployment": self.block_deployment,
            "notification_channels": list(self.notification_channels),
            "approval_required": self.approval_required,
            "escalation_path": list(self.escalation_path),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | EnforcementAction) -> EnforcementAction:
        if isinstance(data, EnforcementAction):
            return data
        return cls(
            type=data.get("type", EnforcementType.WARN),
            block_deployment=data.get("block_deployment"),
            notification_channels=tuple(data.get("notification_channels") or ()),
            approval_required=data.get("approval_required"),
            escalation_path=tuple(data.get("escalation_path") or ()),
        )


# -- Exemptions --


@dataclass(frozen=True)
class Exemption:
    """Waiver suppressing a policy's violations, optionally for one repository."""

    id: str
    reason: str
    approved_by: str
    repository_id: str | None = None
    expires_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.repository_id is not None:
            object.__setattr__(self, "repository_id", str(self.repository_id))
        object.__setattr__(self, "expires_at", parse_datetime(self.expires_at))
        object.__setattr__(self, "created_at", parse_datetime(self.created_at) or utcnow())

    def is_active(self, at: datetime) -> bool:
        """An exemption without expiry never lapses."""
        return self.expires_at is None or self.expires_at > ensure_utc(at)

    def matches(self, repository_id: str, at: datetime) -> bool:
        scoped = self.repository_id is None or self.repository_id == str(repository_id)
        return scoped and self.is_active(at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "expires_at": _isoformat(self.expires_at),
            "created_at": _isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | Exemption) -> Exemption:
        if isinstance(data, Exemption):
            return data
        return cls(
            id=str(data.get("id") or new_exemption_id()),
            reason=str(data.get("reason") or ""),
            approved_by=str(data.get("approved_by") or ""),
            repository_id=data.get("repository_id"),
            expires_at=data.get("expires_at"),
            created_at=data.get("created_at") or utcnow(),
        )


def new_exemption_id() -> str:
    return f"exemption_{uuid.uuid4().hex[:12]}"


# -- Policies --

# Fields a caller may replace through an update.
UPDATABLE_POLICY_FIELDS = frozenset(
    {"name", "description", "category", "severity", "enabled", "rules", "enforcement", "exemptions"}
)


@dataclass(frozen=True)
class Policy:
    """A named bundle of rules plus one enforcement action."""

    id: str
    name: str
    description: str = ""
    category: PolicyCategory = PolicyCategory.VULNERABILITY
    severity: Severity = Severity.MEDIUM
    enabled: bool = True
    rules: tuple[Rule, ...] = ()
    enforcement: EnforcementAction = field(default_factory=EnforcementAction)
    exemptions: tuple[Exemption, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("Policy id is required")
        object.__setattr__(
            self, "category", _coerce_enum(PolicyCategory, self.category, "policy category")
        )
        object.__setattr__(self, "severity", _coerce_enum(Severity, self.severity, "severity"))
        object.__setattr__(self, "enabled", bool(self.enabled))
        object.__setattr__(self, "rules", tuple(Rule.from_dict(r) for r in self.rules))
        object.__setattr__(self, "enforcement", EnforcementAction.from_dict(self.enforcement))
        object.__setattr__(
            self, "exemptions", tuple(Exemption.from_dict(e) for e in self.exemptions)
        )
        object.__setattr__(self, "created_at", parse_datetime(self.created_at) or utcnow())
        object.__setattr__(self, "updated_at", parse_datetime(self.updated_at) or utcnow())

        rule_ids = [rule.id for rule in self.rules]
        if len(rule_ids) != len(set(rule_ids)):
            raise ValidationError("Rule ids must be unique within a policy", {"policy_id": self.id})

    def with_exemption(self, exemption: Exemption) -> Policy:
        return replace(self, exemptions=(*self.exemptions, exemption), updated_at=utcnow())

    def without_exemption(self, exemption_id: str) -> Policy:
        remaining = tuple(e for e in self.exemptions if e.id != exemption_id)
        return replace(self, exemptions=remaining, updated_at=utcnow())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "severity": self.severity.value,
            "enabled": self.enabled,
            "rules": [rule.to_dict() for rule in self.rules],
            "enforcement": self.enforcement.to_dict(),
            "exemptions": [exemption.to_dict() for exemption in self.exemptions],
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Policy:
        now = utcnow()
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or "Custom Policy"),
            description=str(data.get("description") or ""),
            category=data.get("category") or PolicyCategory.VULNERABILITY,
            severity=data.get("severity") or Severity.MEDIUM,
            enabled=data.get("enabled", True) is not False,
            rules=tuple(data.get("rules") or ()),
            enforcement=data.get("enforcement") or EnforcementAction(),
            exemptions=tuple(data.get("exemptions") or ()),
            created_at=data.get("created_at") or now,
            updated_at=data.get("updated_at") or now,
        )


# -- Evaluation results --


@dataclass(frozen=True)
class Violation:
    """A rule firing against current data for one repository."""

    id: str
    policy_id: str
    repository_id: str
    rule_id: str
    severity: Severity
    description: str
    details: Mapping[str, Any]
    status: ViolationStatus
    detected_at: datetime
    resolved_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ViolationStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "policy_id": self.policy_id,
            "repository_id": self.repository_id,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "description": self.description,
            "details": dict(self.details),
            "status": self.status.value,
            "detected_at": _isoformat(self.detected_at),
            "resolved_at": _isoformat(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Violation:
        return cls(
            id=data["id"],
            policy_id=data["policy_id"],
            repository_id=str(data["repository_id"]),
            rule_id=data["rule_id"],
            severity=_coerce_enum(Severity, data["severity"], "severity"),
            description=data.get("description", ""),
            details=dict(data.get("details") or {}),
            status=_coerce_enum(ViolationStatus, data["status"], "violation status"),
            detected_at=parse_datetime(data["detected_at"]) or utcnow(),
            resolved_at=parse_datetime(data.get("resolved_at")),
        )


@dataclass(frozen=True)
class GateCheck:
    """Outcome of one enabled policy within a deployment gate."""

    policy_id: str
    status: CheckStatus
    message: str
    details: tuple[Violation, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "status": self.status.value,
            "message": self.message,
            "details": [violation.to_dict() for violation in self.details],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GateCheck:
        return cls(
            policy_id=data["policy_id"],
            status=_coerce_enum(CheckStatus, data["status"], "check status"),
            message=data.get("message", ""),
            details=tuple(Violation.from_dict(v) for v in data.get("details") or ()),
        )


@dataclass(frozen=True)
class GateApproval:
    """A human decision recorded against a pending gate."""

    approver_email: str
    decision: ApprovalDecision
    reason: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver_email": self.approver_email,
            "decision": self.decision.value,
            "reason": self.reason,
            "timestamp": _isoformat(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GateApproval:
        return cls(
            approver_email=data["approver_email"],
            decision=_coerce_enum(ApprovalDecision, data["decision"], "decision"),
            reason=data.get("reason", ""),
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
        )


@dataclass(frozen=True)
class GateBypass:
    """Administrative override forcing a gate to BYPASSED."""

    actor: str
    reason: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "actor": self.actor,
            "reason": self.reason,
            "timestamp": _isoformat(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GateBypass:
        return cls(
            actor=data["actor"],
            reason=data["reason"],
            timestamp=parse_datetime(data.get("timestamp")) or utcnow(),
        )


@dataclass(frozen=True)
class DeploymentGate:
    """Aggregate deployment decision for one (repository, commit) pair."""

    repository_id: str
    commit_sha: str
    status: GateStatus
    violations: tuple[Violation, ...] = ()
    gate_checks: tuple[GateCheck, ...] = ()
    approvals: tuple[GateApproval, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    bypass: GateBypass | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.repository_id, self.commit_sha)

    @property
    def is_approved(self) -> bool:
        return self.status == GateStatus.APPROVED

    @property
    def is_pending(self) -> bool:
        return self.status == GateStatus.PENDING

    @property
    def is_blocked(self) -> bool:
        return self.status == GateStatus.BLOCKED

    @property
    def is_bypassed(self) -> bool:
        return self.status == GateStatus.BYPASSED

    @property
    def active_violations(self) -> list[Violation]:
        return [v for v in self.violations if v.is_active]

    @property
    def exit_code(self) -> int:
        """CI convention: 0 = proceed, 1 = awaiting approval, 2 = blocked."""
        if self.is_blocked:
            return 2
        if self.is_pending:
            return 1
        return 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "repository_id": self.repository_id,
            "commit_sha": self.commit_sha,
            "status": self.status.value,
            "violations": [v.to_dict() for v in self.violations],
            "gate_checks": [c.to_dict() for c in self.gate_checks],
            "approvals": [a.to_dict() for a in self.approvals],
            "created_at": _isoformat(self.created_at),
            "completed_at": _isoformat(self.completed_at),
            "bypass": self.bypass.to_dict() if self.bypass else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeploymentGate:
        return cls(
            repository_id=str(data["repository_id"]),
            commit_sha=data["commit_sha"],
            status=_coerce_enum(GateStatus, data["status"], "gate status"),
            violations=tuple(Violation.from_dict(v) for v in data.get("violations") or ()),
            gate_checks=tuple(GateCheck.from_dict(c) for c in data.get("gate_checks") or ()),
            approvals=tuple(GateApproval.from_dict(a) for a in data.get("approvals") or ()),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            completed_at=parse_datetime(data.get("completed_at")),
            bypass=GateBypass.from_dict(data["bypass"]) if data.get("bypass") else None,
        )


@dataclass(frozen=True)
class PolicyResult:
    """Per-policy row of a compliance summary."""

    policy_id: str
    policy_name: str
    status: CheckStatus
    violations: tuple[Violation, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "status": self.status.value,
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass(frozen=True)
class ComplianceSummary:
    """Read-only compliance projection for a repository."""

    overall_status: ComplianceStatus
    policy_results: tuple[PolicyResult, ...]
    last_evaluated: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_status": self.overall_status.value,
            "policy_results": [r.to_dict() for r in self.policy_results],
            "last_evaluated": _isoformat(self.last_evaluated),
        }
