"""
Evidence collection stage.

Fans out over the extraction sub-tasks for the primary document. Each
sub-task owns its failures: a failing extractor contributes no evidence
but does not fail the stage. Results are appended in a fixed sub-task order
so ledger order does not depend on which extractor answered first.
"""

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from ..extraction import ExtractionClient, ExtractionKind, ProjectDocument
from ..ledger import Evidence, EvidenceType, LedgerError
from ..pipeline.context import PipelineContext
from ..pipeline.stage import Stage, StageCancelledError, StageTimeoutError

logger = logging.getLogger(__name__)


class EvidenceCollectionInput(BaseModel):
    document: ProjectDocument
    project_documents: list[ProjectDocument] = Field(default_factory=list)


class EvidenceCollectionOutput(BaseModel):
    evidence: list[Evidence]
    document_id: str
    total_evidence: int
    by_extractor: dict[str, int] = Field(default_factory=dict)
    failed_sub_tasks: list[str] = Field(default_factory=list)


# (sub-task, extraction kind, extractor name, evidence type when unspecified)
SUB_TASKS: list[tuple[str, ExtractionKind, str, EvidenceType]] = [
    ("text", ExtractionKind.TEXT, "pdf_text_extractor", EvidenceType.TEXT),
    ("tables", ExtractionKind.TABLES, "table_parser", EvidenceType.TABLE),
    ("symbols", ExtractionKind.SYMBOLS, "symbol_recognition", EvidenceType.SYMBOL),
    ("dimensions", ExtractionKind.DIMENSIONS, "dimension_extractor", EvidenceType.DIMENSION),
    ("vision", ExtractionKind.VISION, "vision_llm", EvidenceType.IMAGE),
]


def build_evidence(
    item: dict[str, Any],
    document: ProjectDocument,
    extractor_name: str,
    default_type: EvidenceType,
) -> Evidence:
    """Turn one raw finding into an Evidence record (raises ValidationError)."""
    return Evidence.model_validate({
        "type": item.get("evidenceType", item.get("evidence_type", default_type.value)),
        "source": {
            "documentId": document.id,
            "pageNumber": item.get("pageNumber", item.get("page_number", 1)),
            "boundingBox": item.get("boundingBox", item.get("bounding_box")),
            "extractorName": extractor_name,
            "confidence": item.get("confidence"),
        },
        "content": item.get("content"),
        "metadata": {
            **item.get("metadata", {}),
            "documentName": document.name,
            "documentType": document.type,
        },
    })


class EvidenceCollectionStage(Stage[Any, EvidenceCollectionOutput]):
    """Collect text, table, symbol, dimension and (flagged) vision evidence."""

    name = "EvidenceCollection"

    def __init__(self, client: ExtractionClient):
        self.client = client

    def validate_input(self, input: Any) -> bool:
        try:
            EvidenceCollectionInput.model_validate(input)
        except ValidationError as e:
            logger.warning(f"EvidenceCollection input rejected: {e.errors()[0]['msg']}")
            return False
        return True

    async def execute(
        self, input: Any, context: PipelineContext
    ) -> EvidenceCollectionOutput:
        data = EvidenceCollectionInput.model_validate(input)
        document = data.document
        context.set_stage_data("document", document.model_dump())
        context.set_stage_data(
            "project_documents", [d.model_dump() for d in data.project_documents]
        )

        sub_tasks = self._enabled_sub_tasks(context)
        already_collected = {
            e.source.extractor_name
            for e in context.ledger.evidence
            if e.source.document_id == document.id
        }
        # A retried attempt keeps what earlier attempts already appended
        pending = [t for t in sub_tasks if t[2] not in already_collected]

        results = await asyncio.gather(
            *(self._run_sub_task(kind, document, context) for _, kind, _, _ in pending),
            return_exceptions=True,
        )
        context.check_cancelled()

        by_extractor: dict[str, int] = {}
        failed: list[str] = []
        for (task_name, _, extractor, default_type), result in zip(pending, results):
            if isinstance(result, (StageTimeoutError, StageCancelledError)):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Evidence sub-task {task_name} failed for {document.id}: {result}")
                failed.append(task_name)
                continue
            by_extractor[extractor] = self._append_findings(
                result, document, extractor, default_type, context
            )

        evidence = [e for e in context.ledger.evidence if e.source.document_id == document.id]
        logger.info(
            f"Collected {len(evidence)} evidence item(s) for {document.id} "
            f"({', '.join(f'{k}={v}' for k, v in by_extractor.items()) or 'none new'})"
        )
        return EvidenceCollectionOutput(
            evidence=evidence,
            document_id=document.id,
            total_evidence=len(evidence),
            by_extractor=by_extractor,
            failed_sub_tasks=failed,
        )

    def _enabled_sub_tasks(self, context: PipelineContext):
        tasks = []
        for task in SUB_TASKS:
            if task[1] == ExtractionKind.VISION and not context.is_feature_enabled(
                "enableVisionStrategies"
            ):
                logger.debug("Vision evidence collection disabled by feature flag")
                continue
            tasks.append(task)
        return tasks

    async def _run_sub_task(
        self,
        kind: ExtractionKind,
        document: ProjectDocument,
        context: PipelineContext,
    ) -> list[dict[str, Any]]:
        token = context.cancellation
        if kind == ExtractionKind.VISION:
            return await self.client.analyze_vision(
                document, token, max_pages=context.policy.extraction.max_pages
            )
        return await self.client.extract(kind, document, token)

    def _append_findings(
        self,
        findings: list[dict[str, Any]],
        document: ProjectDocument,
        extractor: str,
        default_type: EvidenceType,
        context: PipelineContext,
    ) -> int:
        appended = 0
        for item in findings:
            if not isinstance(item, dict):
                logger.warning(f"Skipping non-object {extractor} finding for {document.id}")
                continue
            try:
                evidence = build_evidence(item, document, extractor, default_type)
                context.ledger.add_evidence(evidence)
            except (ValidationError, LedgerError) as e:
                logger.warning(f"Skipping invalid {extractor} finding for {document.id}: {e}")
                continue
            appended += 1
        return appended
