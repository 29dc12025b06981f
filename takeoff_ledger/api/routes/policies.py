"""Policy lookup and validation endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ...services import PipelineServices
from ..dependencies import get_services


router = APIRouter(prefix="/policies", tags=["policies"])


@router.get("")
async def list_policies(services: PipelineServices = Depends(get_services)):
    resolver = services.policy_resolver
    return {
        "policyIds": resolver.available_policy_ids(),
        "default": resolver.default_policy.id,
    }


@router.post("/validate")
async def validate_policy(
    policy: dict[str, Any],
    services: PipelineServices = Depends(get_services),
):
    """Validate a complete policy document without registering it."""
    return services.policy_resolver.validate_policy(policy).to_dict()


@router.get("/{policy_id}")
async def get_policy(policy_id: str, services: PipelineServices = Depends(get_services)):
    resolver = services.policy_resolver
    if not resolver.has_policy(policy_id):
        raise HTTPException(status_code=404, detail=f"Policy not found: {policy_id}")
    return resolver.get_policy(policy_id).model_dump(mode="json", by_alias=True)
