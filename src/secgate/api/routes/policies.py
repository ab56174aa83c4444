"""Policy and exemption API routes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from secgate.api.deps import get_registry
from secgate.core.errors import NotFoundError
from secgate.policies import Exemption, Policy, PolicyRegistry

router = APIRouter()
logger = structlog.get_logger()


# -- Request / Response Models --


class RuleModel(BaseModel):
    id: str | None = None
    type: str = "THRESHOLD"
    condition: str
    operator: str
    value: Any
    description: str = ""


class EnforcementModel(BaseModel):
    type: str = "WARN"
    block_deployment: bool | None = None
    notification_channels: list[str] = Field(default_factory=list)
    approval_required: bool | None = None
    escalation_path: list[str] = Field(default_factory=list)


class ExemptionRequest(BaseModel):
    reason: str = Field(min_length=1)
    approved_by: str = Field(min_length=1)
    repository_id: str | None = None
    expires_at: datetime | None = None


class ExemptionResponse(BaseModel):
    id: str
    repository_id: str | None
    reason: str
    approved_by: str
    expires_at: datetime | None
    created_at: datetime


class PolicyCreateRequest(BaseModel):
    id: str | None = None
    name: str = "Custom Policy"
    description: str = ""
    category: str = "VULNERABILITY"
    severity: str = "MEDIUM"
    enabled: bool = True
    rules: list[RuleModel] = Field(default_factory=list)
    enforcement: EnforcementModel | None = None


class PolicyUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    category: str | None = None
    severity: str | None = None
    enabled: bool | None = None
    rules: list[RuleModel] | None = None
    enforcement: EnforcementModel | None = None


class PolicyResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    severity: str
    enabled: bool
    rules: list[RuleModel]
    enforcement: EnforcementModel
    exemptions: list[ExemptionResponse]
    created_at: datetime
    updated_at: datetime


def _policy_response(policy: Policy) -> PolicyResponse:
    return PolicyResponse.model_validate(policy.to_dict())


def _exemption_response(exemption: Exemption) -> ExemptionResponse:
    return ExemptionResponse.model_validate(exemption.to_dict())


def _policy_payload(body: BaseModel) -> dict[str, Any]:
    # Omitted and null fields fall back to stored values or domain defaults.
    return body.model_dump(exclude_unset=True, exclude_none=True)


# -- Endpoints --


@router.get("/policies", response_model=list[PolicyResponse])
async def list_policies(
    enabled: bool | None = Query(default=None),
    category: str | None = Query(default=None),
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> list[PolicyResponse]:
    """List policies, optionally filtered by enabled flag or category."""
    policies = await registry.list_policies(enabled=enabled, category=category)
    return [_policy_response(p) for p in policies]


@router.post(
    "/policies",
    status_code=status.HTTP_201_CREATED,
    response_model=PolicyResponse,
)
async def create_policy(
    body: PolicyCreateRequest,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> PolicyResponse:
    policy = await registry.create_policy(_policy_payload(body))
    return _policy_response(policy)


@router.get("/policies/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: str,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> PolicyResponse:
    return _policy_response(await registry.require_policy(policy_id))


@router.patch("/policies/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: str,
    body: PolicyUpdateRequest,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> PolicyResponse:
    """Shallow-merge the supplied fields over the stored policy."""
    policy = await registry.update_policy(policy_id, _policy_payload(body))
    if policy is None:
        raise NotFoundError(f"Policy {policy_id} not found", {"policy_id": policy_id})
    return _policy_response(policy)


@router.delete("/policies/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: str,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> Response:
    if not await registry.delete_policy(policy_id):
        raise NotFoundError(f"Policy {policy_id} not found", {"policy_id": policy_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/policies/{policy_id}/exemptions", response_model=list[ExemptionResponse])
async def list_exemptions(
    policy_id: str,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> list[ExemptionResponse]:
    return [_exemption_response(e) for e in await registry.list_exemptions(policy_id)]


@router.post(
    "/policies/{policy_id}/exemptions",
    status_code=status.HTTP_201_CREATED,
    response_model=ExemptionResponse,
)
async def add_exemption(
    policy_id: str,
    body: ExemptionRequest,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> ExemptionResponse:
    """Waive a policy, for one repository or for all of them."""
    await registry.require_policy(policy_id)
    exemption = await registry.add_exemption(
        policy_id,
        reason=body.reason,
        approved_by=body.approved_by,
        repository_id=body.repository_id,
        expires_at=body.expires_at,
    )
    return _exemption_response(exemption)


@router.delete(
    "/policies/{policy_id}/exemptions/{exemption_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def revoke_exemption(
    policy_id: str,
    exemption_id: str,
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> Response:
    if not await registry.revoke_exemption(policy_id, exemption_id):
        raise NotFoundError(
            f"Exemption {exemption_id} not found on policy {policy_id}",
            {"policy_id": policy_id, "exemption_id": exemption_id},
        )
    logger.info("exemption_revoked_via_api", policy_id=policy_id, exemption_id=exemption_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
