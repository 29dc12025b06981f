"""Pipeline core: stage contract, per-run context and the executor."""

from .context import ContextMetadata, PipelineContext
from .executor import (
    Pipeline,
    PipelineConfig,
    PipelineResult,
    StageError,
    backoff_delay_ms,
)
from .stage import (
    CancellationToken,
    FailureKind,
    Stage,
    StageCancelledError,
    StageResult,
    StageTimeoutError,
    StageValidationError,
)

__all__ = [
    "CancellationToken",
    "ContextMetadata",
    "FailureKind",
    "Pipeline",
    "PipelineConfig",
    "PipelineContext",
    "PipelineResult",
    "Stage",
    "StageCancelledError",
    "StageError",
    "StageResult",
    "StageTimeoutError",
    "StageValidationError",
    "backoff_delay_ms",
]
