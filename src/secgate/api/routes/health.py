from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from secgate import __version__
from secgate.api.deps import get_registry
from secgate.policies import PolicyRegistry

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str = __version__
    policies: int


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check(
    registry: PolicyRegistry = Depends(get_registry),  # noqa: B008
) -> HealthResponse:
    """Liveness check; also proves the policy store is readable."""
    policies = await registry.snapshot()
    return HealthResponse(status="healthy", policies=len(policies))
