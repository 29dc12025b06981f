"""Pipeline run endpoints."""

import logging
from dataclasses import replace
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...extraction import ProjectDocument, StaticExtractionClient
from ...ledger import LedgerSummary
from ...pipeline import PipelineConfig
from ...pipeline.factory import create_pipeline, get_default_config
from ...services import PipelineServices
from ..dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


# =============================================================================
# Request/Response Models
# =============================================================================


class RunRequest(BaseModel):
    """Request to run the pipeline over one document."""

    document: ProjectDocument
    project_documents: list[ProjectDocument] = Field(default_factory=list)
    extraction: Optional[dict[str, list[dict[str, Any]]]] = Field(
        default=None,
        description="Precomputed findings by kind; omit to call the extraction service",
    )
    policy_id: Optional[str] = None
    policy_overrides: dict[str, Any] = Field(default_factory=dict)
    feature_flags: dict[str, bool] = Field(default_factory=dict)
    assumption_overrides: dict[str, Any] = Field(default_factory=dict)
    scenario_id: Optional[str] = None
    user_id: Optional[str] = None
    save: bool = True


class RunResponse(BaseModel):
    """Outcome of a pipeline run."""

    run_id: str
    ledger_id: str
    document_id: str
    success: bool
    errors: list[dict[str, Any]] = Field(default_factory=list)
    execution_time_ms: float
    summary: LedgerSummary
    integrity: dict[str, Any]
    storage_key: Optional[str] = None


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", response_model=RunResponse)
async def start_run(
    request: RunRequest,
    services: PipelineServices = Depends(get_services),
):
    """
    Run the full pipeline for a document and store its ledger.

    Stage failures do not fail the request; they are reported in ``errors``
    and as flags in the ledger.
    """
    if request.extraction is not None:
        client = StaticExtractionClient({request.document.id: request.extraction})
        services = replace(services, extraction_client=client)

    config = get_default_config().model_dump()
    config.update(
        policy_overrides=request.policy_overrides,
        feature_flags=request.feature_flags,
        assumption_overrides=request.assumption_overrides,
        scenario_id=request.scenario_id,
        user_id=request.user_id,
    )
    if request.policy_id:
        config["policy_id"] = request.policy_id

    pipeline = create_pipeline(services, PipelineConfig.model_validate(config))
    result = await pipeline.execute({
        "document": request.document.model_dump(),
        "project_documents": [d.model_dump() for d in request.project_documents],
    })

    ledger = result.ledger
    storage_key = None
    if request.save:
        storage_key = await services.ledger_store.save_ledger(ledger, request.document.id)

    return RunResponse(
        run_id=ledger.run_id,
        ledger_id=ledger.id,
        document_id=request.document.id,
        success=result.success,
        errors=[e.to_dict() for e in result.errors],
        execution_time_ms=result.execution_time_ms,
        summary=ledger.get_summary(),
        integrity=ledger.validate_integrity().to_dict(),
        storage_key=storage_key,
    )
