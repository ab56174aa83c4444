"""Deployment gates: construction, approval workflow, storage."""

from secgate.gates.engine import (
    SecurityPolicyEngine,
    build_gate_checks,
    derive_gate_status,
)
from secgate.gates.store import GateStore, InMemoryGateStore, SQLGateStore

__all__ = [
    "GateStore",
    "InMemoryGateStore",
    "SQLGateStore",
    "SecurityPolicyEngine",
    "build_gate_checks",
    "derive_gate_status",
]
