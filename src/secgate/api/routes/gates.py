"""Repository evaluation, deployment gate and audit API routes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from secgate.api.deps import get_audit_store, get_engine
from secgate.gates import SecurityPolicyEngine
from secgate.policies import AuditStore, DeploymentGate

router = APIRouter()


# -- Request / Response Models --


class ViolationItem(BaseModel):
    id: str
    policy_id: str
    repository_id: str
    rule_id: str
    severity: str
    description: str
    details: dict[str, Any]
    status: str
    detected_at: datetime
    resolved_at: datetime | None = None


class GateCheckItem(BaseModel):
    policy_id: str
    status: str
    message: str
    details: list[ViolationItem]


class ApprovalItem(BaseModel):
    approver_email: str
    decision: str
    reason: str
    timestamp: datetime


class BypassItem(BaseModel):
    actor: str
    reason: str
    timestamp: datetime


class GateResponse(BaseModel):
    repository_id: str
    commit_sha: str
    status: str
    violations: list[ViolationItem]
    gate_checks: list[GateCheckItem]
    approvals: list[ApprovalItem]
    created_at: datetime
    completed_at: datetime | None
    bypass: BypassItem | None = None


class GateCreateRequest(BaseModel):
    actor: str | None = None


class DecisionRequest(BaseModel):
    approver_email: str = Field(min_length=1)
    reason: str = ""


class BypassRequest(BaseModel):
    actor: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class EvaluationResponse(BaseModel):
    repository_id: str
    violations: list[ViolationItem]


class PolicyResultItem(BaseModel):
    policy_id: str
    policy_name: str
    status: str
    violations: list[ViolationItem]


class ComplianceResponse(BaseModel):
    repository_id: str
    overall_status: str
    policy_results: list[PolicyResultItem]
    last_evaluated: datetime


class AuditEventItem(BaseModel):
    id: str
    timestamp: datetime
    commit_sha: str | None
    action: str
    actor: str | None
    result: str
    reason: str | None
    extra_data: dict[str, Any]


class AuditListResponse(BaseModel):
    repository_id: str
    events: list[AuditEventItem]


def _gate_response(gate: DeploymentGate) -> GateResponse:
    return GateResponse.model_validate(gate.to_dict())


# -- Evaluation --


@router.post("/repositories/{repository_id}/evaluate", response_model=EvaluationResponse)
async def evaluate_repository(
    repository_id: str,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> EvaluationResponse:
    violations = await engine.evaluate_repository(repository_id)
    return EvaluationResponse.model_validate(
        {"repository_id": repository_id, "violations": [v.to_dict() for v in violations]}
    )


@router.get("/repositories/{repository_id}/compliance", response_model=ComplianceResponse)
async def get_compliance(
    repository_id: str,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> ComplianceResponse:
    summary = await engine.get_repository_compliance(repository_id)
    return ComplianceResponse.model_validate(
        {"repository_id": repository_id, **summary.to_dict()}
    )


# -- Gates --


@router.get("/repositories/{repository_id}/gates", response_model=list[GateResponse])
async def list_gates(
    repository_id: str,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> list[GateResponse]:
    return [_gate_response(g) for g in await engine.list_deployment_gates(repository_id)]


@router.post(
    "/repositories/{repository_id}/gates/{commit_sha}",
    status_code=status.HTTP_201_CREATED,
    response_model=GateResponse,
)
async def create_gate(
    repository_id: str,
    commit_sha: str,
    body: GateCreateRequest | None = None,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> GateResponse:
    """Evaluate a commit against all enabled policies."""
    gate = await engine.create_deployment_gate(
        repository_id, commit_sha, actor=body.actor if body else None
    )
    return _gate_response(gate)


@router.get("/repositories/{repository_id}/gates/{commit_sha}", response_model=GateResponse)
async def get_gate(
    repository_id: str,
    commit_sha: str,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> GateResponse:
    return _gate_response(await engine.get_deployment_gate(repository_id, commit_sha))


@router.post(
    "/repositories/{repository_id}/gates/{commit_sha}/approve",
    response_model=GateResponse,
)
async def approve_gate(
    repository_id: str,
    commit_sha: str,
    body: DecisionRequest,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> GateResponse:
    gate = await engine.approve_deployment_gate(
        repository_id, commit_sha, body.approver_email, body.reason
    )
    return _gate_response(gate)


@router.post(
    "/repositories/{repository_id}/gates/{commit_sha}/reject",
    response_model=GateResponse,
)
async def reject_gate(
    repository_id: str,
    commit_sha: str,
    body: DecisionRequest,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> GateResponse:
    gate = await engine.reject_deployment_gate(
        repository_id, commit_sha, body.approver_email, body.reason
    )
    return _gate_response(gate)


@router.post(
    "/repositories/{repository_id}/gates/{commit_sha}/bypass",
    response_model=GateResponse,
)
async def bypass_gate(
    repository_id: str,
    commit_sha: str,
    body: BypassRequest,
    engine: SecurityPolicyEngine = Depends(get_engine),  # noqa: B008
) -> GateResponse:
    """Administrative override; always audited."""
    gate = await engine.bypass_deployment_gate(repository_id, commit_sha, body.actor, body.reason)
    return _gate_response(gate)


# -- Audit --


@router.get("/audit/{repository_id}", response_model=AuditListResponse)
async def get_audit_trail(
    repository_id: str,
    hours: int = Query(default=24, ge=1, le=720),
    store: AuditStore = Depends(get_audit_store),  # noqa: B008
) -> AuditListResponse:
    """Gate evaluations and decisions for a repository, newest first."""
    events = await store.get_events(repository_id, hours=hours)
    return AuditListResponse(
        repository_id=repository_id,
        events=[
            AuditEventItem(
                id=e.id,
                timestamp=e.timestamp,
                commit_sha=e.commit_sha,
                action=e.action.value,
                actor=e.actor,
                result=e.result,
                reason=e.reason,
                extra_data=e.extra_data,
            )
            for e in events
        ],
    )
