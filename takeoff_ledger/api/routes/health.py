"""Health check endpoints."""

from fastapi import APIRouter, Depends

from ...config.settings import get_settings
from ...services import PipelineServices
from ..dependencies import get_services


router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "service": "takeoff-ledger"}


@router.get("/ready")
async def readiness_check(services: PipelineServices = Depends(get_services)):
    """
    Readiness check - verifies configured dependencies are available.
    """
    settings = get_settings()

    checks = {
        "extraction_service_configured": settings.is_extraction_service_configured(),
        "langsmith_configured": settings.is_langsmith_configured(),
        "ledger_store": settings.ledger_store_backend,
        "policies_loaded": len(services.policy_resolver.available_policy_ids()),
    }
    ready = settings.ledger_store_backend != "firestore" or settings.is_firestore_configured()

    return {
        "status": "ready" if ready else "degraded",
        "checks": checks,
    }


@router.get("/config")
async def config_info(services: PipelineServices = Depends(get_services)):
    """
    Configuration info (non-sensitive).
    """
    settings = get_settings()

    return {
        "policy_id": settings.policy_id,
        "max_retries": settings.pipeline_max_retries,
        "stage_timeout_s": settings.pipeline_stage_timeout_s,
        "feature_flags": services.feature_flags.get_all_flags(),
        "langsmith_project": settings.langchain_project if settings.is_langsmith_configured() else None,
    }
