"""Stored ledger endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from ...ledger import InferenceLedger, LedgerCorruptionError
from ...services import PipelineServices
from ..dependencies import get_services


router = APIRouter(prefix="/ledgers", tags=["ledgers"])


async def _load(services: PipelineServices, doc_id: str, run_id: str) -> InferenceLedger:
    try:
        ledger = await services.ledger_store.load_ledger(doc_id, run_id)
    except LedgerCorruptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if ledger is None:
        raise HTTPException(status_code=404, detail=f"Ledger not found: {doc_id}/{run_id}")
    return ledger


@router.get("/{doc_id}")
async def list_runs(doc_id: str, services: PipelineServices = Depends(get_services)):
    return {
        "documentId": doc_id,
        "runIds": await services.ledger_store.list_run_ids(doc_id),
    }


@router.get("/{doc_id}/{run_id}")
async def get_ledger(doc_id: str, run_id: str, services: PipelineServices = Depends(get_services)):
    ledger = await _load(services, doc_id, run_id)
    return ledger.to_dict()


@router.get("/{doc_id}/{run_id}/integrity")
async def check_integrity(
    doc_id: str, run_id: str, services: PipelineServices = Depends(get_services)
):
    """Full structural and referential audit of a stored ledger."""
    ledger = await _load(services, doc_id, run_id)
    return {
        **ledger.validate_integrity().to_dict(),
        "summary": ledger.get_summary().model_dump(by_alias=True),
    }


@router.delete("/{doc_id}/{run_id}")
async def delete_ledger(doc_id: str, run_id: str, services: PipelineServices = Depends(get_services)):
    if not await services.ledger_store.delete_ledger(doc_id, run_id):
        raise HTTPException(status_code=404, detail=f"Ledger not found: {doc_id}/{run_id}")
    return {"deleted": True}
