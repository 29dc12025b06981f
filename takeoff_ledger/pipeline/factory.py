"""Pre-assembled pipelines."""

import logging
from typing import Callable, Optional

from ..config.settings import Settings, get_settings
from ..services import PipelineServices
from ..stages import (
    AssumptionSeedingStage,
    ConflictResolutionStage,
    EvidenceCollectionStage,
    MultiStrategyInferenceStage,
)
from ..strategies import default_strategies
from .executor import Pipeline, PipelineConfig
from .stage import Stage

logger = logging.getLogger(__name__)

MIN_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 15 * 60_000
MAX_RETRIES_LIMIT = 10

# Topics worth inferring per document type; None means every strategy
DOCUMENT_TYPE_TOPICS: dict[str, Optional[set[str]]] = {
    "structural": None,
    "architectural": {"stud_spacing", "wall_type"},
    "specifications": {"joist_species", "stud_spacing"},
}


def get_default_config(settings: Optional[Settings] = None) -> PipelineConfig:
    settings = settings or get_settings()
    return PipelineConfig(
        policy_id=settings.policy_id,
        max_retries=settings.pipeline_max_retries,
        timeout_ms=int(settings.pipeline_stage_timeout_s * 1000),
        backoff_base_ms=settings.pipeline_backoff_base_ms,
        backoff_max_ms=settings.pipeline_backoff_max_ms,
    )


def validate_config(config: PipelineConfig) -> list[str]:
    """Operational limits for production pipelines; empty when valid."""
    errors = []
    if not 1 <= config.max_retries <= MAX_RETRIES_LIMIT:
        errors.append(f"max_retries must be between 1 and {MAX_RETRIES_LIMIT}")
    if not MIN_TIMEOUT_MS <= config.timeout_ms <= MAX_TIMEOUT_MS:
        errors.append(
            f"timeout_ms must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS}"
        )
    if config.backoff_max_ms < config.backoff_base_ms:
        errors.append("backoff_max_ms must not be below backoff_base_ms")
    return errors


def _new_pipeline(
    services: PipelineServices,
    config: PipelineConfig,
    on_progress: Optional[Callable[[float], None]] = None,
) -> Pipeline:
    for error in validate_config(config):
        logger.warning(f"Pipeline config: {error}")
    return Pipeline(
        config=config,
        policy_resolver=services.policy_resolver,
        feature_flags=services.feature_flags,
        tracer=services.tracer,
        on_progress=on_progress,
    )


def create_pipeline(
    services: PipelineServices,
    config: Optional[PipelineConfig] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> Pipeline:
    """EvidenceCollection, AssumptionSeeding, MultiStrategyInference, ConflictResolution."""
    config = config or get_default_config()
    pipeline = _new_pipeline(services, config, on_progress)
    pipeline.add_stage(EvidenceCollectionStage(services.extraction_client))
    pipeline.add_stage(AssumptionSeedingStage())
    pipeline.add_stage(MultiStrategyInferenceStage())

    flags = services.feature_flags.with_overrides(config.feature_flags)
    if flags.is_enabled("useConflictResolver"):
        pipeline.add_stage(ConflictResolutionStage())
    else:
        logger.info("useConflictResolver disabled; pipeline ends after inference")
    return pipeline


def create_custom_pipeline(
    stages: list[Stage],
    services: PipelineServices,
    config: Optional[PipelineConfig] = None,
) -> Pipeline:
    pipeline = _new_pipeline(services, config or get_default_config())
    for stage in stages:
        pipeline.add_stage(stage)
    return pipeline


def create_test_pipeline(
    services: PipelineServices,
    config: Optional[PipelineConfig] = None,
) -> Pipeline:
    """Short pipeline for smoke tests: collection and seeding only, one attempt."""
    overrides = config.model_dump(exclude_unset=True) if config else {}
    test_config = PipelineConfig.model_validate(
        {"policy_id": "test", "max_retries": 1, "timeout_ms": 60_000, **overrides}
    )
    pipeline = Pipeline(
        config=test_config,
        policy_resolver=services.policy_resolver,
        feature_flags=services.feature_flags,
        tracer=services.tracer,
    )
    pipeline.add_stage(EvidenceCollectionStage(services.extraction_client))
    pipeline.add_stage(AssumptionSeedingStage())
    return pipeline


def create_document_type_pipeline(
    document_type: str,
    services: PipelineServices,
    config: Optional[PipelineConfig] = None,
) -> Pipeline:
    """
    Pipeline tuned to a document type.

    Structural sets get every strategy, architectural and specification sets
    a subset, and anything else stops after assumption seeding.
    """
    config = config or get_default_config()
    pipeline = _new_pipeline(services, config)
    pipeline.add_stage(EvidenceCollectionStage(services.extraction_client))
    pipeline.add_stage(AssumptionSeedingStage())

    key = document_type.lower()
    if key not in DOCUMENT_TYPE_TOPICS:
        logger.info(f"No inference stages for document type '{document_type}'")
        return pipeline

    topics = DOCUMENT_TYPE_TOPICS[key]
    strategies = [s for s in default_strategies() if topics is None or s.topic in topics]
    pipeline.add_stage(MultiStrategyInferenceStage(strategies, enable_patterns=topics is None))
    pipeline.add_stage(ConflictResolutionStage())
    return pipeline
