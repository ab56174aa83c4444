"""
Rule evaluator.

Evaluates a single compiled rule against a metrics snapshot, independent of
the policy that owns it.

Operator semantics:
    GT / LT        numeric comparison of the metric against the rule value
    EQ / NE        numeric comparison when both sides are numeric, else direct
    IN / NOT_IN    membership of the string-coerced metric in the value set
    CONTAINS       substring test on the string-coerced metric
    MATCHES        regular expression search on the string-coerced metric

A list-valued metric (e.g. license_type) violates IN, CONTAINS and MATCHES
when any element does, and NOT_IN when any element falls outside the set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from secgate.core.errors import InvalidRuleError
from secgate.policies.models import Rule, RuleOperator, as_number

# Metric keys supplied by the default metrics providers.
KNOWN_CONDITIONS = frozenset(
    {
        "critical_vulnerabilities",
        "high_vulnerabilities",
        "license_type",
        "dependency_age_months",
        "test_coverage_percentage",
        "security_hotspots",
    }
)


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule against a snapshot."""

    actual_value: Any
    violated: bool


def _strings(actual: Any) -> list[str]:
    if isinstance(actual, (list, tuple, set, frozenset)):
        return [str(item) for item in actual]
    return [str(actual)]


def _number(actual: Any) -> int | float:
    number = as_number(actual)
    if number is None:
        raise InvalidRuleError(f"Metric value {actual!r} is not numeric")
    return number


def _equals(actual: Any, expected: Any) -> bool:
    left, right = as_number(actual), as_number(expected)
    if left is not None and right is not None:
        return left == right
    return actual == expected


OPERATORS: dict[RuleOperator, Callable[[Any, Any], bool]] = {
    RuleOperator.GT: lambda actual, operand: _number(actual) > operand,
    RuleOperator.LT: lambda actual, operand: _number(actual) < operand,
    RuleOperator.EQ: _equals,
    RuleOperator.NE: lambda actual, operand: not _equals(actual, operand),
    RuleOperator.IN: lambda actual, operand: any(s in operand for s in _strings(actual)),
    RuleOperator.NOT_IN: lambda actual, operand: any(s not in operand for s in _strings(actual)),
    RuleOperator.CONTAINS: lambda actual, operand: any(operand in s for s in _strings(actual)),
    RuleOperator.MATCHES: lambda actual, operand: any(
        operand.search(s) is not None for s in _strings(actual)
    ),
}


def evaluate_rule(rule: Rule, snapshot: Mapping[str, Any]) -> RuleOutcome | None:
    """
    Evaluate a rule against a metrics snapshot.

    Args:
        rule: Compiled rule
        snapshot: Mapping of metric key to observed value

    Returns:
        RuleOutcome, or None when the snapshot has no value for the rule's
        condition (the rule is not applicable)

    Raises:
        InvalidRuleError: If the observed value cannot be compared with the
            rule's operator (e.g. a GT rule over a non-numeric metric)
    """
    if rule.condition not in snapshot:
        return None

    actual = snapshot[rule.condition]
    if actual is None:
        return None

    predicate = OPERATORS[rule.operator]
    try:
        violated = bool(predicate(actual, rule.operand))
    except TypeError as exc:
        raise InvalidRuleError(
            f"Cannot apply {rule.operator} to {actual!r}",
            {"rule_id": rule.id, "condition": rule.condition},
        ) from exc

    return RuleOutcome(actual_value=actual, violated=violated)
